"""
Pydantic models for transcripts, LLM outputs and the final article.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Priority = Literal["high", "medium", "low"]

IMAGE_KINDS = ("会議録", "目次", "索引", "附録", "追録")


# ---------------- Raw transcript (National Diet API) ----------------

class RawSpeechRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    speech_id: Optional[str] = Field(default=None, alias='speechID')
    speech_order: Optional[int] = Field(default=None, alias='speechOrder')
    speaker: Optional[str] = None
    speaker_yomi: Optional[str] = Field(default=None, alias='speakerYomi')
    speaker_group: Optional[str] = Field(default=None, alias='speakerGroup')
    speaker_position: Optional[str] = Field(default=None, alias='speakerPosition')
    speaker_role: Optional[str] = Field(default=None, alias='speakerRole')
    speech: Optional[str] = None


class RawMeetingRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    issue_id: str = Field(alias='issueID')
    image_kind: str = Field(default="会議録", alias='imageKind')
    search_object: Optional[int] = Field(default=None, alias='searchObject')
    session: int = 0
    name_of_house: str = Field(default="", alias='nameOfHouse')
    name_of_meeting: str = Field(default="", alias='nameOfMeeting')
    issue: Optional[str] = None
    date: str
    closing: Optional[str] = None
    speech_record: List[RawSpeechRecord] = Field(default_factory=list, alias='speechRecord')
    meeting_url: Optional[str] = Field(default=None, alias='meetingURL')
    pdf_url: Optional[str] = Field(default=None, alias='pdfURL')


class RawMeetingData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    number_of_records: int = Field(default=0, alias='numberOfRecords')
    number_of_return: int = Field(default=0, alias='numberOfReturn')
    start_record: int = Field(default=1, alias='startRecord')
    next_record_position: Optional[int] = Field(default=None, alias='nextRecordPosition')
    meeting_record: List[RawMeetingRecord] = Field(default_factory=list, alias='meetingRecord')


# ---------------- Pipeline records ----------------

class Dialog(BaseModel):
    order: int
    speaker: str = ""
    speaker_group: str = ""
    speaker_position: str = ""
    speaker_role: str = ""
    original_text: str = ""
    summary: str = ""
    soft_language: str = ""


class MiddleSummary(BaseModel):
    based_on_orders: List[int] = Field(default_factory=list)
    summary: str = ""


class Summary(MiddleSummary):
    pass


class SoftSummary(MiddleSummary):
    pass


class Participant(BaseModel):
    name: str
    summary: str = ""


class Term(BaseModel):
    term: str
    definition: str = ""


class Keyword(BaseModel):
    keyword: str
    priority: Priority = "low"

    @field_validator('priority', mode='before')
    @classmethod
    def _normalize_priority(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in ("high", "medium", "low"):
                return "low"
        return v


class MeetingMeta(BaseModel):
    id: str
    date: str
    month: str
    image_kind: str = "会議録"
    session: int = 0
    name_of_house: str = ""
    name_of_meeting: str = ""


# ---------------- LLM outputs ----------------

class DialogUpdate(BaseModel):
    order: int
    summary: Optional[str] = None
    soft_language: Optional[str] = None


class ChunkResult(BaseModel):
    """Per-chunk output. Only middle_summary is required."""
    categories: List[str] = Field(default_factory=list)
    dialogs: List[DialogUpdate] = Field(default_factory=list)
    middle_summary: MiddleSummary
    terms: List[Term] = Field(default_factory=list)
    keywords: List[Keyword] = Field(default_factory=list)
    participants: List[Participant] = Field(default_factory=list)
    outline: List[str] = Field(default_factory=list)


class ReduceResult(BaseModel):
    """Output of one reduction call; the root result is authoritative."""
    title: str = ""
    categories: List[str] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    soft_summary: SoftSummary = Field(default_factory=SoftSummary)
    description: str = ""
    keywords: List[Keyword] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> 'ReduceResult':
        return cls()


class ChunkOutcome(BaseModel):
    """A processed chunk, tagged with its structural index."""
    index: int
    dialogs: List[Dialog]
    result: ChunkResult
    raw_text: Optional[str] = None


# ---------------- Final aggregate ----------------

class Article(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    date: str
    month: str
    image_kind: str
    session: int
    name_of_house: str
    name_of_meeting: str
    categories: List[str]
    description: str
    summary: Summary
    soft_summary: SoftSummary
    middle_summary: List[MiddleSummary]
    dialogs: List[Dialog]
    participants: List[Participant]
    keywords: List[Keyword]
    terms: List[Term]
