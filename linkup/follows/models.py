follows_sql = """
CREATE TABLE follows (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

    follower_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    following_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- A follow edge exists at most once
    CONSTRAINT unique_follow_pair UNIQUE (follower_id, following_id),

    -- Users cannot follow themselves
    CONSTRAINT prevent_self_follow CHECK (follower_id <> following_id)
);

CREATE INDEX follows_following_idx ON follows (following_id);
"""

SETUP_SQL = (follows_sql,)
