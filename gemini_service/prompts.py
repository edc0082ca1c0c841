from __future__ import annotations

from typing import Optional

TRANSCRIPTION_PROMPT = """\
Transcribe the speech in this audio file accurately.
Follow these rules:
- Write down what is said, as it is said; do not summarize or translate.
- Add punctuation where it belongs.
- Mark passages you cannot make out as [inaudible].
- Return only the transcript, without commentary or headings.
"""


def build_transcription_prompt(language: Optional[str] = None) -> str:
    if not language:
        return TRANSCRIPTION_PROMPT
    return f"{TRANSCRIPTION_PROMPT}- The audio is in {language}; format it as natural {language} text.\n"
