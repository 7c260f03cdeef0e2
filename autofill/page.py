"""
Playwright page adapter.

Implements the FormPage interface on a live page (async API):
- enumerate_fields: tags each control with data-autofill-id and reads its metadata
- get_question_text: label discovery (wrapping label, for=, aria-labelledby,
  legend, nearby label, aria-label, placeholder)
- load_options: opens lazy dropdowns and reads their [role=option] items
- write_value / attach_file: per-type writes
"""

import asyncio
import logging
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError, Page

from autofill import config
from autofill.errors import FieldEnumerationError
from autofill.field_classifier import FieldDescriptor, FieldType, RawField

logger = logging.getLogger(__name__)

ID_ATTR = "data-autofill-id"

ENUMERATE_JS = """
() => {
    const SKIP_TYPES = ['hidden', 'submit', 'button', 'reset', 'image'];
    const selector = 'input, textarea, select, button[aria-haspopup], [role="combobox"], [role="radiogroup"], [role="listbox"]';
    let counter = window.__autofillCounter || 0;
    const idOf = (el) => {
        if (!el.getAttribute('data-autofill-id')) {
            counter += 1;
            el.setAttribute('data-autofill-id', 'af-' + counter);
        }
        return el.getAttribute('data-autofill-id');
    };
    const isVisible = (el) => {
        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
    };
    const textOf = (el) => (el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim();
    const radioLabel = (radio) => {
        if (radio.id) {
            const label = document.querySelector(`label[for="${CSS.escape(radio.id)}"]`);
            if (label) return textOf(label);
        }
        const wrapping = radio.closest('label');
        if (wrapping) return textOf(wrapping);
        return radio.getAttribute('aria-label') || radio.value || '';
    };
    const dataAttrs = (el) => {
        const out = {};
        for (const attr of el.attributes) {
            if (attr.name.startsWith('data-') && attr.name !== 'data-autofill-id') out[attr.name] = attr.value;
        }
        return out;
    };

    const fields = [];
    const seenRadioNames = new Set();
    for (const el of document.querySelectorAll(selector)) {
        const inputType = (el.getAttribute('type') || '').toLowerCase();
        if (el.tagName === 'INPUT' && SKIP_TYPES.includes(inputType)) continue;
        const group = el.parentElement && el.parentElement.closest('[role="radiogroup"], [role="combobox"]');
        if (group) continue;

        let options = [];
        let currentValue = '';
        if (inputType === 'radio') {
            if (el.name && seenRadioNames.has(el.name)) continue;
            const radios = el.name
                ? Array.from(document.querySelectorAll(`input[type="radio"][name="${CSS.escape(el.name)}"]`))
                : [el];
            if (el.name) seenRadioNames.add(el.name);
            options = radios.map(radioLabel).filter(Boolean);
            const checked = radios.find(r => r.checked);
            currentValue = checked ? radioLabel(checked) : '';
        } else if (el.getAttribute('role') === 'radiogroup') {
            const items = Array.from(el.querySelectorAll('[role="radio"], input[type="radio"]'));
            options = items.map(i => i.tagName === 'INPUT' ? radioLabel(i) : textOf(i)).filter(Boolean);
            const checked = items.find(i => i.checked || i.getAttribute('aria-checked') === 'true');
            currentValue = checked ? (checked.tagName === 'INPUT' ? radioLabel(checked) : textOf(checked)) : '';
        } else if (el.tagName === 'SELECT') {
            options = Array.from(el.options).filter(o => o.value !== '' && !o.disabled).map(o => textOf(o));
            const selected = el.selectedOptions[0];
            currentValue = selected && selected.value !== '' ? textOf(selected) : '';
        } else if (inputType === 'checkbox' || el.getAttribute('role') === 'checkbox') {
            currentValue = (el.checked || el.getAttribute('aria-checked') === 'true') ? 'true' : '';
        } else if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA') {
            currentValue = el.value || '';
        } else {
            currentValue = el.tagName === 'BUTTON' ? '' : textOf(el);
        }

        fields.push({
            id: idOf(el),
            tag: el.tagName.toLowerCase(),
            input_type: inputType,
            role: el.getAttribute('role') || '',
            class_name: typeof el.className === 'string' ? el.className : '',
            name: el.getAttribute('name') || '',
            element_id: el.id || '',
            placeholder: el.getAttribute('placeholder') || '',
            aria_haspopup: el.getAttribute('aria-haspopup') || '',
            aria_autocomplete: el.getAttribute('aria-autocomplete') || '',
            multiselectable: el.getAttribute('aria-multiselectable') === 'true',
            multiple: !!el.multiple,
            options: options,
            visible: isVisible(el),
            disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
            current_value: currentValue,
            data_attrs: dataAttrs(el),
        });
    }
    window.__autofillCounter = counter;
    return fields;
}
"""

QUESTION_JS = """
(el) => {
    const textOf = (node) => (node.innerText || node.textContent || '').replace(/\\s+/g, ' ').trim();

    const wrapping = el.closest('label');
    if (wrapping && textOf(wrapping)) return textOf(wrapping);

    if (el.id) {
        const label = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
        if (label && textOf(label)) return textOf(label);
    }

    const labelledBy = el.getAttribute('aria-labelledby');
    if (labelledBy) {
        const text = labelledBy.split(/\\s+/)
            .map(id => document.getElementById(id))
            .filter(Boolean)
            .map(textOf)
            .join(' ')
            .trim();
        if (text) return text;
    }

    const fieldset = el.closest('fieldset');
    if (fieldset) {
        const legend = fieldset.querySelector('legend');
        if (legend && textOf(legend)) return textOf(legend);
    }

    let current = el;
    for (let level = 0; level < 5 && current.parentElement; level++) {
        const parent = current.parentElement;
        for (const label of parent.querySelectorAll('label')) {
            if (label.contains(el) || label.nextElementSibling === current) {
                if (textOf(label)) return textOf(label);
            }
        }
        current = parent;
    }

    const ariaLabel = el.getAttribute('aria-label');
    if (ariaLabel && ariaLabel.trim()) return ariaLabel.trim();

    const placeholder = el.getAttribute('placeholder');
    if (placeholder && placeholder.trim()) return placeholder.trim();

    return null;
}
"""

OPTIONS_JS = """
(el) => {
    const textOf = (node) => (node.innerText || node.textContent || '').replace(/\\s+/g, ' ').trim();
    const controls = el.getAttribute('aria-controls') || el.getAttribute('aria-owns');
    const scope = (controls && document.getElementById(controls))
        || document.querySelector('[role="listbox"]:not([hidden])')
        || document;
    return Array.from(scope.querySelectorAll('[role="option"]')).map(textOf).filter(Boolean);
}
"""

CHECK_RADIO_JS = """
(el, value) => {
    const textOf = (node) => (node.innerText || node.textContent || '').replace(/\\s+/g, ' ').trim();
    let items;
    if (el.getAttribute('role') === 'radiogroup') {
        items = Array.from(el.querySelectorAll('[role="radio"], input[type="radio"]'));
    } else if (el.name) {
        items = Array.from(document.querySelectorAll(`input[type="radio"][name="${CSS.escape(el.name)}"]`));
    } else {
        items = [el];
    }
    const labelOf = (item) => {
        if (item.tagName !== 'INPUT') return textOf(item);
        if (item.id) {
            const label = document.querySelector(`label[for="${CSS.escape(item.id)}"]`);
            if (label) return textOf(label);
        }
        const wrapping = item.closest('label');
        return wrapping ? textOf(wrapping) : (item.getAttribute('aria-label') || item.value || '');
    };
    const target = items.find(item => labelOf(item) === value);
    if (!target) return false;
    target.click();
    return true;
}
"""

IS_CHECKED_JS = "(el) => !!el.checked || el.getAttribute('aria-checked') === 'true'"


class PlaywrightFormPage:
    """FormPage backed by a Playwright async Page."""

    def __init__(self, page: Page, option_load_delay: float = config.OPTION_LOAD_DELAY):
        self.page = page
        self.option_load_delay = option_load_delay

    @property
    def url(self) -> str:
        return self.page.url

    def _locator(self, raw: RawField):
        return self.page.locator(f'[{ID_ATTR}="{raw.id}"]').first

    async def enumerate_fields(self) -> List[RawField]:
        try:
            items = await self.page.evaluate(ENUMERATE_JS)
        except PlaywrightError as e:
            raise FieldEnumerationError(f"Page evaluation failed: {e}") from e
        return [RawField(**item) for item in items]

    async def get_question_text(self, raw: RawField) -> Optional[str]:
        try:
            text = await self._locator(raw).evaluate(QUESTION_JS)
        except PlaywrightError as e:
            logger.debug(f"Label lookup failed for {raw.id}: {e}")
            return None
        return " ".join(text.split()) if text else None

    async def load_options(self, raw: RawField) -> List[str]:
        """Open a lazy dropdown, read its options and close it again."""
        locator = self._locator(raw)
        try:
            await locator.click()
            await asyncio.sleep(self.option_load_delay)
            options = await locator.evaluate(OPTIONS_JS)
            await self.page.keyboard.press("Escape")
        except PlaywrightError as e:
            logger.debug(f"Could not load options for {raw.id}: {e}")
            return []
        # keep order, drop duplicates
        return list(dict.fromkeys(options))

    async def _pick_option(self, value: str) -> bool:
        option = self.page.get_by_role("option", name=value, exact=True).first
        if await option.count() == 0:
            return False
        await option.click()
        return True

    async def write_value(self, raw: RawField, descriptor: FieldDescriptor, value: str) -> bool:
        locator = self._locator(raw)
        try:
            if descriptor.type == FieldType.SELECT and raw.tag == "select":
                await locator.select_option(label=value)
            elif descriptor.type == FieldType.RADIO_GROUP:
                return bool(await locator.evaluate(CHECK_RADIO_JS, value))
            elif descriptor.type == FieldType.CHECKBOX:
                wanted = value == "true"
                if bool(await locator.evaluate(IS_CHECKED_JS)) != wanted:
                    await locator.click()
            elif descriptor.type in (FieldType.CUSTOM_DROPDOWN, FieldType.SELECT):
                await locator.click()
                await asyncio.sleep(self.option_load_delay)
                if not await self._pick_option(value):
                    await self.page.keyboard.press("Escape")
                    return False
            elif descriptor.type == FieldType.SEARCHABLE_SELECT:
                await locator.click()
                if raw.tag in ("input", "textarea"):
                    await locator.fill(value)
                else:
                    await self.page.keyboard.type(value)
                await asyncio.sleep(self.option_load_delay)
                if not await self._pick_option(value):
                    await self.page.keyboard.press("Enter")
            else:
                await locator.fill(value)
                if descriptor.type == FieldType.DATEPICKER:
                    # close the calendar popup without changing the value
                    await self.page.keyboard.press("Escape")
        except PlaywrightError as e:
            logger.warning(f"Write failed for {raw.id}: {e}")
            return False
        return True

    async def attach_file(self, raw: RawField, path: str) -> bool:
        try:
            await self._locator(raw).set_input_files(path)
        except PlaywrightError as e:
            logger.warning(f"Could not attach {path}: {e}")
            return False
        return True
