from watchparty.models.room import Room, Member, PlaybackState, ChatMessage, VoiceSession

__all__ = ["Room", "Member", "PlaybackState", "ChatMessage", "VoiceSession"]
