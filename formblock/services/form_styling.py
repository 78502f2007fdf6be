"""Normalises vendor-rendered form markup so the site theme can style it.

Each patch function is safe to run repeatedly: it reports how many mutations
it made, and a second pass over an already patched subtree reports zero.
"""

from __future__ import annotations

from uuid import uuid4

from bs4 import BeautifulSoup, Tag

from formblock.core.logging import log_debug
from formblock.services.dom_events import (
    DomObserver,
    EventRegistry,
    Subscription,
    add_class,
    class_list,
    has_class,
    owner_document,
    remove_classes,
)
from formblock.services.multiselect import HIDDEN_CLASS, MultiSelectWidget

VENDOR_STYLESHEET_IDS = ("mktoForms2ThemeStyle", "mktoForms2BaseStyle")
VENDOR_LAYOUT_SELECTOR = ".mktoAsterix, .mktoOffset, .mktoGutter, .mktoClear"
VENDOR_BUTTON_CLASSES = ("mktoButton", "mktoButtonWrap", "mktoDownloadButton")

FIELD_WRAPPER_CLASS = "form-field-wrapper"
SELECT_WRAPPER_CLASS = "form-select-wrapper"
RADIO_LIST_CLASS = "radio-list-fix"
ACTIVE_CLASS = "form-field--is-active"
FILLED_CLASS = "form-field--is-filled"
FIELD_BOUND_ATTRIBUTE = "data-form-field-state"

TEXT_INPUT_TYPES = frozenset(
    {
        "text",
        "email",
        "tel",
        "url",
        "number",
        "password",
        "search",
        "date",
        "datetime-local",
        "month",
        "time",
        "week",
    }
)


def _remove_style(element: Tag) -> int:
    if element.has_attr("style"):
        del element["style"]
        return 1
    return 0


def clean_vendor_layout(form_el: Tag, document: BeautifulSoup) -> int:
    """Remove vendor inline layout and stylesheets from a rendered form."""

    mutations = _remove_style(form_el)
    for element in form_el.select(".mktoHasWidth"):
        mutations += _remove_style(element)

    for stylesheet_id in VENDOR_STYLESHEET_IDS:
        stylesheet = document.find(id=stylesheet_id)
        if stylesheet is not None:
            stylesheet.decompose()
            mutations += 1

    for element in form_el.select(VENDOR_LAYOUT_SELECTOR):
        element.decompose()
        mutations += 1

    for element in form_el.select(".mktoButtonWrap"):
        mutations += _remove_style(element)
    for element in form_el.select(", ".join(f".{name}" for name in VENDOR_BUTTON_CLASSES)):
        if remove_classes(element, *VENDOR_BUTTON_CLASSES):
            mutations += 1

    for radio_list in form_el.select(".mktoRadioList"):
        parent = radio_list.parent
        grandparent = parent.parent if parent is not None else None
        if isinstance(grandparent, Tag) and not isinstance(grandparent, BeautifulSoup):
            if add_class(grandparent, RADIO_LIST_CLASS):
                mutations += 1

    for select in form_el.find_all("select"):
        parent = select.parent
        if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
            if add_class(parent, SELECT_WRAPPER_CLASS):
                mutations += 1

    return mutations


def pair_labels(form_el: Tag, document: BeautifulSoup, suffix: str | None = None) -> int:
    """Give label/control pairs unique ids and wrap them together.

    Several copies of the same vendor form on one page share field ids, which
    breaks ``label[for]``. Select controls are left alone.
    """

    suffix = suffix or f"_{uuid4().hex[:8]}"
    mutations = 0
    for label in form_el.find_all("label", attrs={"for": True}):
        if isinstance(label.parent, Tag) and has_class(label.parent, FIELD_WRAPPER_CLASS):
            continue
        target_id = label["for"]
        control = form_el.find(attrs={"id": target_id})
        if control is None or control.name == "select":
            continue
        # A label wrapping its own control is already paired.
        if any(parent is label for parent in control.parents):
            continue

        new_id = f"{target_id}{suffix}"
        control["id"] = new_id
        label["for"] = new_id

        wrapper = document.new_tag("div", attrs={"class": [FIELD_WRAPPER_CLASS]})
        control.insert_before(wrapper)
        wrapper.append(control.extract())
        wrapper.append(label.extract())
        mutations += 1
    return mutations


def _is_styled_field(element: Tag) -> bool:
    if element.name == "textarea":
        return True
    if element.name == "select":
        return not element.has_attr("multiple")
    if element.name == "input":
        return str(element.get("type", "text")).lower() in TEXT_INPUT_TYPES
    return False


def field_value(element: Tag) -> str:
    if element.name == "textarea":
        return element.get_text()
    if element.name == "select":
        selected = element.find("option", selected=True)
        if selected is None:
            return ""
        value = selected.get("value")
        return str(value) if value is not None else selected.get_text(strip=True)
    return str(element.get("value", ""))


def update_filled_state(element: Tag) -> int:
    parent = element.parent
    if not isinstance(parent, Tag):
        return 0
    if field_value(element):
        return int(add_class(parent, FILLED_CLASS))
    return int(remove_classes(parent, FILLED_CLASS))


def _on_focus(element: Tag) -> None:
    if isinstance(element.parent, Tag):
        add_class(element.parent, ACTIVE_CLASS)


def _on_blur(element: Tag) -> None:
    if isinstance(element.parent, Tag):
        remove_classes(element.parent, ACTIVE_CLASS)
    update_filled_state(element)


def attach_field_state(form_el: Tag, events: EventRegistry) -> int:
    """Bind focus and blur listeners that mirror field state on the parent."""

    mutations = 0
    for element in form_el.find_all(["input", "textarea", "select"]):
        if not _is_styled_field(element) or element.has_attr(FIELD_BOUND_ATTRIBUTE):
            continue
        element[FIELD_BOUND_ATTRIBUTE] = "bound"
        events.add_listener(element, "focus", _on_focus)
        events.add_listener(element, "blur", _on_blur)
        events.add_listener(element, "change", update_filled_state)
        update_filled_state(element)
        mutations += 1
    return mutations


class FormStylingPatcher:
    """Applies the styling pass to rendered forms and keeps them patched."""

    def __init__(self, events: EventRegistry | None = None, observer: DomObserver | None = None) -> None:
        self.events = events or EventRegistry()
        self.observer = observer or DomObserver()
        self.widgets: list[MultiSelectWidget] = []
        self._subscriptions: dict[int, Subscription] = {}

    def enhance_multiselects(self, form_el: Tag) -> int:
        created = 0
        for select in form_el.select("select[multiple]"):
            if HIDDEN_CLASS in class_list(select):
                continue
            self.widgets.append(MultiSelectWidget(select, events=self.events))
            created += 1
        return created

    def patch(self, form_el: Tag) -> int:
        document = owner_document(form_el)
        mutations = clean_vendor_layout(form_el, document)
        mutations += pair_labels(form_el, document)
        mutations += self.enhance_multiselects(form_el)
        mutations += attach_field_state(form_el, self.events)
        return mutations

    def attach(self, form_el: Tag) -> int:
        mutations = self.patch(form_el)
        key = id(form_el)
        if key not in self._subscriptions:
            self._subscriptions[key] = self.observer.observe(
                form_el, lambda nodes: self._on_nodes_added(form_el, nodes)
            )
        log_debug("Form styling applied", form_id=form_el.get("data-id"), mutations=mutations)
        return mutations

    def detach(self, form_el: Tag) -> None:
        subscription = self._subscriptions.pop(id(form_el), None)
        if subscription is not None:
            subscription.unsubscribe()

    def _on_nodes_added(self, form_el: Tag, nodes: list[Tag]) -> None:
        mutations = self.patch(form_el)
        log_debug("Patched inserted form nodes", nodes=len(nodes), mutations=mutations)
