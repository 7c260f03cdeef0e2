"""
Field classifier.

Maps static field metadata (tag, type, role, class hints, options) to a
FieldDescriptor. Pure and deterministic: it never touches the page and
never raises; anything it cannot place is treated as a text input.
"""

import logging
import re
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Dict, List, Optional

from autofill.errors import ClassificationAmbiguous
from utils.normalize import identifier_tokens

logger = logging.getLogger(__name__)


class FieldType(Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO_GROUP = "radio-group"
    CHECKBOX = "checkbox"
    CUSTOM_DROPDOWN = "custom-dropdown"
    DATEPICKER = "datepicker"
    SEARCHABLE_SELECT = "searchable-select"
    FILE = "file"


@dataclass
class RawField:
    """Metadata of one form element as read from the page."""
    id: str
    tag: str = ""
    input_type: str = ""
    role: str = ""
    class_name: str = ""
    name: str = ""
    element_id: str = ""
    placeholder: str = ""
    aria_haspopup: str = ""
    aria_autocomplete: str = ""
    multiselectable: bool = False
    multiple: bool = False
    options: List[str] = dataclass_field(default_factory=list)
    visible: bool = True
    disabled: bool = False
    current_value: str = ""
    data_attrs: Dict[str, str] = dataclass_field(default_factory=dict)


@dataclass
class FieldDescriptor:
    id: str
    type: FieldType
    options: List[str] = dataclass_field(default_factory=list)
    format: Optional[str] = None
    options_pending: bool = False  # empty options mean "load on demand"
    multiple: bool = False


# Class-name hints (whole tokens)
MULTI_HINTS = {"multiselect", "multi", "tags", "tagsinput"}
SEARCHABLE_HINTS = {"select2", "chosen", "selectize", "searchable", "autocomplete", "typeahead", "tom"}
POPUP_HINTS = {"dropdown", "combobox", "picker", "listbox", "menu", "popover"}
DATE_TOKENS = {"date", "data", "datepicker", "calendar", "kalendarz", "dob", "birthday"}
LAZY_DATA_KEYS = {"data-lazy", "data-ajax", "data-remote", "data-source", "data-url"}

RE_DATE_PLACEHOLDER = re.compile(r"^(dd|mm|yyyy)([./\-\s])(dd|mm)\2(yyyy|dd)$", re.IGNORECASE)


def _date_format(raw: RawField) -> Optional[str]:
    if raw.input_type == "date":
        return "YYYY-MM-DD"
    placeholder = (raw.placeholder or "").strip()
    if RE_DATE_PLACEHOLDER.match(placeholder):
        return placeholder.upper()
    return None


def _classify_strict(raw: RawField) -> FieldDescriptor:
    tag = (raw.tag or "").lower()
    if not tag:
        raise ClassificationAmbiguous(f"Field {raw.id} has no tag")

    input_type = (raw.input_type or "").lower()
    role = (raw.role or "").lower()
    haspopup = (raw.aria_haspopup or "").lower()
    class_tokens = identifier_tokens([raw.class_name])
    options = [o.strip() for o in raw.options if o and o.strip()]

    def describe(field_type: FieldType, **kwargs) -> FieldDescriptor:
        return FieldDescriptor(id=raw.id, type=field_type, options=options, **kwargs)

    # Multi-option widgets
    if raw.multiselectable or (tag == "select" and raw.multiple) or class_tokens & MULTI_HINTS:
        if tag == "select" or options:
            return describe(FieldType.SELECT, multiple=True)
        return describe(FieldType.CUSTOM_DROPDOWN, multiple=True, options_pending=True)

    if tag == "select":
        return describe(FieldType.SELECT)

    if input_type == "file":
        return describe(FieldType.FILE)

    if role == "radiogroup" or input_type == "radio":
        return describe(FieldType.RADIO_GROUP)

    if input_type == "checkbox" or role == "checkbox":
        return describe(FieldType.CHECKBOX)

    lazy = bool(LAZY_DATA_KEYS & set(raw.data_attrs))
    searchable = (
        class_tokens & SEARCHABLE_HINTS
        or lazy
        or (role == "combobox" and (raw.aria_autocomplete or "").lower() in ("list", "both"))
    )
    if searchable:
        return describe(FieldType.SEARCHABLE_SELECT, options_pending=not options)

    if (
        role in ("combobox", "listbox")
        or haspopup in ("true", "listbox", "dialog", "menu")
        or class_tokens & POPUP_HINTS
    ):
        return describe(FieldType.CUSTOM_DROPDOWN, options_pending=not options)

    id_tokens = identifier_tokens([raw.name, raw.element_id, raw.class_name, raw.placeholder])
    date_format = _date_format(raw)
    if date_format or id_tokens & DATE_TOKENS:
        return describe(FieldType.DATEPICKER, format=date_format)

    if tag == "textarea":
        return describe(FieldType.TEXTAREA)

    return describe(FieldType.TEXT)


def classify(raw: RawField) -> FieldDescriptor:
    """Classify a field; ambiguous metadata falls back to a text input."""
    try:
        return _classify_strict(raw)
    except ClassificationAmbiguous as e:
        logger.debug(f"Ambiguous field, treating as text: {e}")
        return FieldDescriptor(id=raw.id, type=FieldType.TEXT)
