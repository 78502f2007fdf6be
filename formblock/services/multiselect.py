"""Accessible replacement for native ``select[multiple]`` controls.

The native select stays in the document, visually hidden, and remains the
source of truth for the submitted values. The widget renders a combobox with
removable chips and a listbox of options, and keeps its ARIA attributes in
sync with the selection after every interaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from bs4 import BeautifulSoup, Tag

from formblock.services.dom_events import EventRegistry, add_class, owner_document

DEFAULT_PLACEHOLDER = "Select options"
HIDDEN_CLASS = "form-visually-hidden"


class WidgetState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True, slots=True)
class MultiSelectOption:
    value: str
    label: str
    selected: bool
    disabled: bool = False


def _option_value(option: Tag) -> str:
    value = option.get("value")
    if value is None:
        return option.get_text(strip=True)
    return str(value)


class MultiSelectWidget:
    def __init__(
        self,
        select: Tag,
        *,
        events: EventRegistry | None = None,
        widget_id: str | None = None,
    ) -> None:
        if select.name != "select" or not select.has_attr("multiple"):
            raise ValueError("MultiSelectWidget requires a select element with the multiple attribute")
        self.select = select
        self.document: BeautifulSoup = owner_document(select)
        self.events = events
        self.widget_id = widget_id or f"form-multiselect-{uuid4().hex[:8]}"
        self.state = WidgetState.CLOSED
        self.active_index = 0
        self.focus: str | int | None = None
        self._build()
        self.sync()

    # -- state -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.state is WidgetState.OPEN

    @property
    def options(self) -> list[MultiSelectOption]:
        return [
            MultiSelectOption(
                value=_option_value(option),
                label=option.get_text(strip=True),
                selected=option.has_attr("selected"),
                disabled=option.has_attr("disabled"),
            )
            for option in self._native_options()
        ]

    @property
    def selected_values(self) -> list[str]:
        return [option.value for option in self.options if option.selected]

    def _native_options(self) -> list[Tag]:
        return self.select.find_all("option")

    # -- markup ----------------------------------------------------------

    def _new_tag(self, name: str, **attrs: str) -> Tag:
        values: dict[str, str | list[str]] = dict(attrs)
        if "class" in values:
            values["class"] = str(values["class"]).split()
        return self.document.new_tag(name, attrs=values)

    def _label(self) -> Tag | None:
        select_id = self.select.get("id")
        if not select_id:
            return None
        return self.document.find("label", attrs={"for": select_id})

    def _build(self) -> None:
        add_class(self.select, HIDDEN_CLASS)
        self.select["aria-hidden"] = "true"
        self.select["tabindex"] = "-1"

        self.container = self._new_tag("div", **{"class": "form-multiselect", "id": self.widget_id})
        self.listbox_id = f"{self.widget_id}-listbox"

        self.display = self._new_tag(
            "div",
            **{
                "class": "form-multiselect__display",
                "role": "combobox",
                "aria-expanded": "false",
                "aria-haspopup": "listbox",
                "aria-controls": self.listbox_id,
                "tabindex": "0",
            },
        )
        label = self._label()
        if label is not None:
            if not label.get("id"):
                label["id"] = f"{self.widget_id}-label"
            self.display["aria-labelledby"] = label["id"]
        elif self.select.get("name"):
            self.display["aria-label"] = str(self.select["name"])

        self.listbox = self._new_tag(
            "ul",
            **{
                "class": "form-multiselect__listbox",
                "id": self.listbox_id,
                "role": "listbox",
                "aria-multiselectable": "true",
            },
        )
        self.container.append(self.display)
        self.container.append(self.listbox)
        self.select.insert_after(self.container)

    def _option_id(self, index: int) -> str:
        return f"{self.widget_id}-option-{index}"

    def sync(self) -> None:
        """Re-render chips, options and ARIA state from the native select."""

        options = self.options
        if options:
            self.active_index = max(0, min(self.active_index, len(options) - 1))
        else:
            self.active_index = 0

        self.display.clear()
        selected = [option for option in options if option.selected]
        if selected:
            for option in selected:
                chip = self._new_tag("span", **{"class": "form-multiselect__chip", "data-value": option.value})
                chip.append(option.label)
                remove = self._new_tag(
                    "button",
                    **{
                        "type": "button",
                        "class": "form-multiselect__chip-remove",
                        "aria-label": f"Remove {option.label}",
                        "data-value": option.value,
                        "tabindex": "-1",
                    },
                )
                remove.append("×")
                chip.append(remove)
                self.display.append(chip)
        else:
            placeholder = self._new_tag("span", **{"class": "form-multiselect__placeholder"})
            placeholder.append(self.select.get("data-placeholder") or DEFAULT_PLACEHOLDER)
            self.display.append(placeholder)

        self.display["aria-expanded"] = "true" if self.is_open else "false"
        if self.is_open and options:
            self.display["aria-activedescendant"] = self._option_id(self.active_index)
        elif self.display.has_attr("aria-activedescendant"):
            del self.display["aria-activedescendant"]

        self.listbox.clear()
        for index, option in enumerate(options):
            classes = ["form-multiselect__option"]
            if self.is_open and index == self.active_index:
                classes.append("form-multiselect__option--active")
            item = self._new_tag(
                "li",
                **{
                    "id": self._option_id(index),
                    "class": " ".join(classes),
                    "role": "option",
                    "aria-selected": "true" if option.selected else "false",
                    "data-value": option.value,
                },
            )
            if option.disabled:
                item["aria-disabled"] = "true"
            item.append(option.label)
            self.listbox.append(item)

        if self.is_open:
            if self.listbox.has_attr("hidden"):
                del self.listbox["hidden"]
        else:
            self.listbox["hidden"] = ""

    # -- transitions -----------------------------------------------------

    def open(self) -> None:
        self.state = WidgetState.OPEN
        self.focus = self.active_index if self.options else "display"
        self.sync()

    def close(self, *, focus_display: bool = False) -> None:
        self.state = WidgetState.CLOSED
        self.focus = "display" if focus_display else None
        self.sync()

    def _toggle_option(self, index: int) -> bool:
        native = self._native_options()
        if not 0 <= index < len(native):
            return False
        option = native[index]
        if option.has_attr("disabled"):
            return False
        if option.has_attr("selected"):
            del option["selected"]
        else:
            option["selected"] = ""
        if self.events is not None:
            self.events.dispatch(self.select, "change")
        return True

    def _move(self, index: int) -> None:
        count = len(self.options)
        if not count:
            return
        self.active_index = max(0, min(index, count - 1))
        self.focus = self.active_index
        self.sync()

    # -- interactions ----------------------------------------------------

    def click_display(self) -> None:
        if self.is_open:
            self.close(focus_display=True)
            return
        self.active_index = 0
        self.open()

    def click_option(self, index: int) -> bool:
        changed = self._toggle_option(index)
        if changed:
            self.active_index = index
            self.focus = index
        self.sync()
        return changed

    def remove_chip(self, value: str) -> bool:
        for option in self._native_options():
            if _option_value(option) == value and option.has_attr("selected"):
                del option["selected"]
                if self.events is not None:
                    self.events.dispatch(self.select, "change")
                self.focus = "display"
                self.sync()
                return True
        return False

    def click_outside(self) -> None:
        if self.is_open:
            self.close()

    def handle_key(self, key: str) -> bool:
        """Apply a keyboard interaction; return whether the default is prevented."""

        if key in ("ArrowDown", "ArrowUp"):
            if not self.is_open:
                self.open()
                return True
            step = 1 if key == "ArrowDown" else -1
            self._move(self.active_index + step)
            return True

        if key in ("Home", "End"):
            if not self.is_open:
                return False
            self._move(0 if key == "Home" else len(self.options) - 1)
            return True

        if key in ("Enter", " "):
            if not self.is_open:
                self.open()
                return True
            self.click_option(self.active_index)
            return True

        if key == "Escape":
            if not self.is_open:
                return False
            self.close(focus_display=True)
            return True

        if key == "Tab":
            if self.is_open:
                self.close()
            return False

        return False
