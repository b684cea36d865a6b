"""
Chat service for the school messaging endpoints.
Maps /api/chat/* and the teacher/principal contact feeds to typed payload models.
Error envelopes and malformed shapes surface as ChatServiceError.
"""

from typing import TypeVar

from pydantic import BaseModel, ValidationError

from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.api.envelope import ApiErrorResponse, ApiResult, BlobResponse
from schoolchat.models.api.school_payloads import (
    ChatMessagePayload,
    ChatMessagesData,
    ChatThreadsData,
    CheckExistingThreadData,
    CheckExistingThreadRequest,
    DivisionParentsData,
    PrincipalChatsData,
    PrincipalChatsParams,
    SendMessageRequest,
    StartConversationData,
    StartConversationRequest,
    TeacherLinkedParentsData,
)
from schoolchat.services.api_client import SchoolApiClient, school_api_client

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

TEACHER_LINKED_PARENTS_ENDPOINT = "/api/users/teacher-linked-parents"
PRINCIPAL_CHATS_ENDPOINT = "/api/users/principal/chats"
CHAT_THREADS_ENDPOINT = "/api/chat/threads"
CHAT_MESSAGES_ENDPOINT = "/api/chat/messages"
CHECK_EXISTING_THREAD_ENDPOINT = "/api/chat/check-existing-thread"
START_CONVERSATION_ENDPOINT = "/api/chat/start-conversation"
DIVISION_PARENTS_ENDPOINT = "/api/users/division/{division_id}/parents"


class ChatServiceError(Exception):
    """Custom exception for chat endpoint failures."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
        envelope: ApiErrorResponse | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.envelope = envelope


class ChatService:
    """
    Typed access to the chat endpoints.

    Each method returns the `data` payload of a success envelope, validated
    into its pydantic model.
    """

    def __init__(self, client: SchoolApiClient | None = None):
        self._client = client or school_api_client

    def _unwrap(self, result: ApiResult, model: type[PayloadT], operation: str) -> PayloadT:
        """
        Validate an envelope and parse its data.

        Raises:
            ChatServiceError: on error envelopes, binary bodies or shape mismatches
        """
        if isinstance(result, BlobResponse):
            logger.error("Unexpected blob response", operation=operation)
            raise ChatServiceError(
                f"Unexpected blob response for {operation}", operation=operation
            )

        if isinstance(result, ApiErrorResponse):
            logger.warning(
                "Chat API returned error",
                operation=operation,
                status_code=result.status_code,
                message=result.message,
            )
            raise ChatServiceError(
                result.message or f"Failed to {operation}",
                operation=operation,
                status_code=result.status_code,
                envelope=result,
            )

        if result.cached:
            raise ChatServiceError(
                f"No fresh data for {operation}", operation=operation, status_code=304
            )

        try:
            return model.model_validate(result.data)
        except ValidationError as e:
            logger.error("Invalid response format", operation=operation, error=str(e))
            raise ChatServiceError(
                "Invalid response format from server",
                operation=operation,
                status_code=result.status_code,
            ) from e

    async def get_teacher_linked_parents(
        self, token: str, teacher_id: str | None = None
    ) -> TeacherLinkedParentsData:
        params = {"teacher_id": teacher_id} if teacher_id else None
        result = await self._client.get(TEACHER_LINKED_PARENTS_ENDPOINT, token, params=params)
        return self._unwrap(result, TeacherLinkedParentsData, "fetch teacher linked parents")

    async def get_chat_threads(self, token: str) -> ChatThreadsData:
        result = await self._client.get(CHAT_THREADS_ENDPOINT, token)
        return self._unwrap(result, ChatThreadsData, "fetch chat threads")

    async def get_principal_chats(
        self, token: str, params: PrincipalChatsParams | None = None
    ) -> PrincipalChatsData:
        query = (params or PrincipalChatsParams()).to_query()
        result = await self._client.get(PRINCIPAL_CHATS_ENDPOINT, token, params=query or None)
        return self._unwrap(result, PrincipalChatsData, "fetch principal chats")

    async def get_chat_messages(self, thread_id: str, token: str) -> ChatMessagesData:
        result = await self._client.get(
            CHAT_MESSAGES_ENDPOINT, token, params={"thread_id": thread_id}
        )
        return self._unwrap(result, ChatMessagesData, "fetch chat messages")

    async def check_existing_thread(
        self, payload: CheckExistingThreadRequest, token: str
    ) -> CheckExistingThreadData:
        result = await self._client.post(
            CHECK_EXISTING_THREAD_ENDPOINT, payload.model_dump(), token
        )
        return self._unwrap(result, CheckExistingThreadData, "check existing thread")

    async def start_conversation(
        self, payload: StartConversationRequest, token: str
    ) -> StartConversationData:
        result = await self._client.post(START_CONVERSATION_ENDPOINT, payload.model_dump(), token)
        return self._unwrap(result, StartConversationData, "start conversation")

    async def send_message(self, payload: SendMessageRequest, token: str) -> ChatMessagePayload:
        if not payload.thread_id or not payload.content:
            raise ChatServiceError("Invalid message data", operation="send message")
        result = await self._client.post(CHAT_MESSAGES_ENDPOINT, payload.model_dump(), token)
        return self._unwrap(result, ChatMessagePayload, "send message")

    async def get_division_parents(self, division_id: str, token: str) -> DivisionParentsData:
        if not division_id:
            raise ChatServiceError("Class division id is required", operation="fetch division parents")
        result = await self._client.get(
            DIVISION_PARENTS_ENDPOINT.format(division_id=division_id), token
        )
        return self._unwrap(result, DivisionParentsData, "fetch division parents")


chat_service = ChatService()
