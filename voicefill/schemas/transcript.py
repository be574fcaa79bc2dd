"""
Data models for live speech transcripts.
"""

from voicefill.schemas.base import WireModel


def join_text(head: str, tail: str) -> str:
    """Concatenate two transcript pieces with exactly one separating space."""
    if not head:
        return tail
    if not tail:
        return head
    if head[-1].isspace() or tail[0].isspace():
        return head + tail
    return f"{head} {tail}"


class TranscriptState(WireModel):
    """
    Transcript of the current capture session.

    ``final_text`` only grows while recording; ``interim_text`` is the
    recognizer's current guess and is replaced on every update.
    """
    final_text: str = ""
    interim_text: str = ""

    @property
    def text(self) -> str:
        """What the extraction engine sees."""
        return join_text(self.final_text, self.interim_text)


class RecognitionResult(WireModel):
    """One result event from the speech capability."""
    is_final: bool = False
    transcript_chunk: str


class RecognitionErrorEvent(WireModel):
    """One error event from the speech capability."""
    code: str
    message: str = ""
