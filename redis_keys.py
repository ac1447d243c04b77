REDIS_ROOM_KEY = "room:{code}" # room code - hash of JSON encoded room fields
REDIS_ONLINE_KEY = "online:{code}" # room code - set of display names
REDIS_MESSAGES_KEY = "messages:{code}" # room code - list of JSON messages, newest first
REDIS_ROOM_CHANNEL = "chat-{code}" # room code - pub/sub channel name

REDIS_ROOM_SCAN_PATTERN = "room:*"

# **Example `room:{code}` hash fields**
# - `code` = `"ABC-123"`
# - `creator` = display name
# - `participants` = JSON list of display names in join order
# - `createdAt` / `expiresAt` = ISO timestamps (TTL mirrors `expiresAt`)
# - `duration` = minutes
# - `participantsCount` = capacity
# - `messageCount` = last known count, never trusted for reads
