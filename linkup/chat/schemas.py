from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional

from linkup.profiles.schemas import User


class Conversation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    participant_1: str
    participant_2: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class EnrichedConversation(Conversation):
    other_participant: User


class ConversationDetails(Conversation):
    other_user_id: str


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


class EnrichedMessage(Message):
    sender_profile: User


# Get or create conversation
class CreateConversationModel(BaseModel):
    receiver_id: str


# Send Messages
class SendMessageModel(BaseModel):
    content: str = ""
    media_url: Optional[str] = None
    media_type: Optional[str] = None
