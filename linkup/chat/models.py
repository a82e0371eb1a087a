conversations_sql = """
CREATE TABLE conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

    participant_1 UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    participant_2 UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,

    last_message TEXT,
    last_message_at TIMESTAMPTZ,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- Enforce canonical ordering
    CONSTRAINT participant_1_less_than_participant_2 CHECK (participant_1 < participant_2),

    -- Ensure only one conversation per user pair
    CONSTRAINT unique_conversation_pair UNIQUE (participant_1, participant_2)
);

CREATE INDEX conversations_participant_2_idx ON conversations (participant_2);
"""

messages_sql = """
CREATE TABLE messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id UUID NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    sender_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,

    content TEXT NOT NULL DEFAULT '',
    media_url TEXT,
    media_type TEXT,

    is_read BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- A message carries text, media or both
    CONSTRAINT message_not_empty CHECK (content <> '' OR media_url IS NOT NULL)
);

CREATE INDEX messages_conversation_created_idx ON messages (conversation_id, created_at);
CREATE INDEX messages_unread_idx ON messages (sender_id) WHERE is_read = FALSE;
"""

get_or_create_conversation_sql = """
CREATE OR REPLACE FUNCTION get_or_create_conversation_simple(user1_id UUID, user2_id UUID)
RETURNS UUID
LANGUAGE plpgsql
AS $$
DECLARE
    p1 UUID := LEAST(user1_id, user2_id);
    p2 UUID := GREATEST(user1_id, user2_id);
    conversation_id UUID;
BEGIN
    INSERT INTO conversations (participant_1, participant_2)
    VALUES (p1, p2)
    ON CONFLICT (participant_1, participant_2) DO NOTHING
    RETURNING id INTO conversation_id;

    IF conversation_id IS NULL THEN
        SELECT id INTO conversation_id
        FROM conversations
        WHERE participant_1 = p1 AND participant_2 = p2;
    END IF;

    RETURN conversation_id;
END;
$$;
"""

realtime_sql = """
ALTER PUBLICATION supabase_realtime ADD TABLE messages;
ALTER PUBLICATION supabase_realtime ADD TABLE conversations;
"""

SETUP_SQL = (
    conversations_sql,
    messages_sql,
    get_or_create_conversation_sql,
    realtime_sql,
)
