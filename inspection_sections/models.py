"""
Typed shapes for templates, answer documents and request bodies.

Answer documents are a tagged union on ``kind``: a partial document holds
the sections one or more saves wrote, a final document is the single
record left after compaction. Both share the same layout.
"""
import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as SchemaError

from inspection_sections.errors import Internal, ValidationError

INSPECTION_STATUSES = ('DRAFT', 'IN_PROGRESS', 'SUBMITTED',
                       'APPROVED', 'REJECTED', 'CANCELED')
SECTION_STATUSES = ('IN_PROGRESS', 'COMPLETED', 'SKIPPED')

# Inspection-level fields captured once from the first section
METADATA_FIELDS = ('date', 'inspector', 'location', 'scale_id_serial_no', 'model')


# ============================================================
# TEMPLATE SCHEMA
# ============================================================

class TemplateField(BaseModel):
    id: str
    # Plain text, or a localized {lang: text} mapping
    question: Union[str, Dict[str, Any]] = ''
    type: Optional[str] = None
    options: List[Any] = Field(default_factory=list)
    text_required: bool = False
    image_required: bool = False

    @property
    def required(self) -> bool:
        return self.text_required or self.image_required

    def to_json(self) -> dict:
        return {
            'id': self.id,
            'question': self.question,
            'type': self.type,
            'options': self.options,
            'textRequired': self.text_required,
            'imageRequired': self.image_required,
            'required': self.required,
        }


class TemplateSection(BaseModel):
    key: str
    title: str
    order: int
    fields: List[TemplateField]

    def to_json(self) -> dict:
        return {
            'name': self.key,
            'title': self.title,
            'order': self.order,
            'questions': [f.to_json() for f in self.fields],
            'totalQuestions': len(self.fields),
        }


# ============================================================
# ANSWER DOCUMENTS
# ============================================================

class FieldAnswer(BaseModel):
    """One field's answer. Unknown keys sent by the client are kept."""
    model_config = ConfigDict(extra='allow')

    status: Any = None
    comment: Optional[str] = None
    images: List[Any] = Field(default_factory=list)

    @field_validator('comment', mode='before')
    @classmethod
    def _comment_as_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator('images', mode='before')
    @classmethod
    def _images_as_list(cls, value):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]

    @classmethod
    def from_raw(cls, value) -> 'FieldAnswer':
        if isinstance(value, FieldAnswer):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        return cls(status=value)

    def to_json(self) -> dict:
        return self.model_dump(mode='json', exclude_unset=True)


# Field id -> answer, in template order
SectionAnswerMap = Dict[str, FieldAnswer]


def section_map_to_json(answers: SectionAnswerMap) -> dict:
    return {key: answer.to_json() for key, answer in answers.items()}


class _AnswerDocBase(BaseModel):
    data: Dict[str, SectionAnswerMap] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None
    remarks: Any = None
    signatures: Optional[Dict[str, Any]] = None

    def section_keys(self) -> List[str]:
        return list(self.data.keys())

    def to_json(self) -> dict:
        doc = {
            'kind': self.kind,
            'data': {key: section_map_to_json(answers)
                     for key, answers in self.data.items()},
        }
        if self.metadata is not None:
            doc['metadata'] = self.metadata
        if self.remarks is not None:
            doc['remarks'] = self.remarks
        if self.signatures is not None:
            doc['signatures'] = self.signatures
        return doc


class PartialAnswerDoc(_AnswerDocBase):
    kind: Literal['partial'] = 'partial'

    def finalize(self) -> 'FinalAnswerDoc':
        return FinalAnswerDoc(data=self.data, metadata=self.metadata,
                              remarks=self.remarks, signatures=self.signatures)


class FinalAnswerDoc(_AnswerDocBase):
    kind: Literal['final'] = 'final'


AnswerDoc = Annotated[Union[PartialAnswerDoc, FinalAnswerDoc],
                      Field(discriminator='kind')]
_answer_doc_adapter = TypeAdapter(AnswerDoc)


def load_answer_doc(raw) -> Union[PartialAnswerDoc, FinalAnswerDoc]:
    """Decode a stored answers column into a typed document."""
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        raw = dict(raw or {})
        raw.setdefault('kind', 'partial')
        return _answer_doc_adapter.validate_python(raw)
    except (ValueError, TypeError) as e:
        raise Internal('Stored answer record is unreadable') from e


def dump_answer_doc(doc) -> str:
    return json.dumps(doc.to_json(), ensure_ascii=False)


# ============================================================
# REQUEST BODIES
# ============================================================

class SaveSectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    inspection_id: str = Field(alias='inspectionId', min_length=1)
    section: str = Field(min_length=1)
    answers: Dict[str, Any]
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    status: Optional[str] = None
    section_status: str = Field(default='IN_PROGRESS', alias='sectionStatus')
    section_index: Optional[int] = Field(default=None, alias='sectionIndex', ge=0)
    is_first_section: bool = Field(default=False, alias='isFirstSection')
    answer_id: Optional[str] = Field(default=None, alias='answerId')
    data: Optional[Dict[str, Any]] = None

    @field_validator('inspection_id', 'answer_id', mode='before')
    @classmethod
    def _coerce_ids(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator('status', mode='before')
    @classmethod
    def _check_status(cls, value):
        if value is None or value == '':
            return None
        if not isinstance(value, str):
            raise ValueError('status must be a string')
        status = value.upper()
        if status not in INSPECTION_STATUSES:
            raise ValueError(f"status must be one of {', '.join(INSPECTION_STATUSES)}")
        return status

    @field_validator('section_status', mode='before')
    @classmethod
    def _normalize_section_status(cls, value):
        if isinstance(value, str) and value.upper() in SECTION_STATUSES:
            return value.upper()
        return 'IN_PROGRESS'

    def raw_section_answers(self) -> dict:
        """Answers for the saved section; legacy clients nest them under data."""
        if self.data and isinstance(self.data.get(self.section), dict):
            return dict(self.data[self.section])
        return dict(self.answers)


class SignaturesRequest(BaseModel):
    signatures: Dict[str, Any]


def parse_payload(model, payload):
    """Validate a request body, turning schema errors into ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    try:
        return model.model_validate(payload)
    except SchemaError as e:
        fields = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        missing = [f['field'] for f, err in zip(fields, e.errors())
                   if err['type'] == 'missing']
        message = (f"Missing required fields: {', '.join(missing)}"
                   if missing else 'Invalid request body')
        raise ValidationError(message, details={'fields': fields}) from e
