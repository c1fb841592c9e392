"""
Build ordered Dialog records and meeting metadata from raw meeting records.
"""
import re
from typing import List, Optional

from core.models import IMAGE_KINDS, Dialog, MeetingMeta, RawMeetingRecord, RawSpeechRecord

_LINE_ENDINGS = re.compile(r'\r\n?')


def clean_text(text: Optional[str]) -> str:
    """Normalize line endings and ideographic spaces. Content is never cut."""
    if not text:
        return ""
    return _LINE_ENDINGS.sub('\n', text).replace('\u3000', ' ')


def speech_order(speech: RawSpeechRecord, position: int) -> int:
    """Numeric order: speechID suffix, then speechOrder, then 1-based position."""
    if speech.speech_id and '_' in speech.speech_id:
        suffix = speech.speech_id.split('_')[1]
        if suffix.strip().isdigit():
            return int(suffix)
    if speech.speech_order is not None:
        return speech.speech_order
    return position + 1


def to_dialog(speech: RawSpeechRecord, order: int) -> Dialog:
    return Dialog(
        order=order,
        speaker=speech.speaker or "",
        speaker_group=speech.speaker_group or "",
        speaker_position=speech.speaker_position or "",
        speaker_role=speech.speaker_role or "",
        original_text=clean_text(speech.speech),
    )


def build_dialogs(raw: RawMeetingRecord) -> List[Dialog]:
    """Dialogs sorted ascending by resolved order (stable for equal orders)."""
    resolved = [(speech_order(s, i), s) for i, s in enumerate(raw.speech_record)]
    resolved.sort(key=lambda pair: pair[0])
    return [to_dialog(s, order) for order, s in resolved]


def build_meta(raw: RawMeetingRecord) -> MeetingMeta:
    image_kind = raw.image_kind if raw.image_kind in IMAGE_KINDS else "会議録"
    return MeetingMeta(
        id=raw.issue_id,
        date=raw.date,
        month=raw.date[:7],
        image_kind=image_kind,
        session=raw.session,
        name_of_house=raw.name_of_house,
        name_of_meeting=raw.name_of_meeting,
    )
