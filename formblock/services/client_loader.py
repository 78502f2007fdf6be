"""Headless model of the in-page form loader.

The loader reads the page configuration, asks the vendor forms library to
fill each placeholder form, styles rendered forms and drives the success
flow. The vendor library is reached only through the ``FormsLibrary`` and
``VendorForm`` protocols so it can be replaced by a fake in tests or by a
browser bridge in production.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import httpx
from bs4 import BeautifulSoup, Tag

from formblock.core.logging import log_debug, log_error, log_info, log_warning
from formblock.services.dom_events import EventBus, Subscription
from formblock.services.form_styling import FormStylingPatcher

SUCCESS_EVENT = "form-block:success"
ERROR_EVENT = "form-block:error"
FORM_SELECTOR = "form.mktoForm[data-id]"
CONTAINER_CLASS = "form-block"
LOAD_ERROR_CLASS = "form-block-load-error"

CONFIG_MISSING_MESSAGE = "Form configuration not found. Please check your settings."
LIBRARY_MISSING_MESSAGE = (
    "The form library is not loaded. Please check if the script is being blocked by your browser."
)
FORM_LOAD_FAILED_MESSAGE = "This form could not be loaded. Please try again later."


class ClientLoaderError(RuntimeError):
    """Base class for loader failures that are surfaced in the page."""


class ClientConfigMissing(ClientLoaderError):
    pass


class FormLibraryLoadError(ClientLoaderError):
    pass


class ProxySubmitError(ClientLoaderError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class ClientConfig:
    instance_url: str
    tracking_id: str
    nonce: str = ""
    submit_url: str = ""


def load_client_config(raw: Mapping[str, Any] | None) -> ClientConfig | None:
    """Read the page configuration object; ``None`` means not configured."""

    if not raw:
        return None
    instance_url = str(raw.get("url") or raw.get("instance_url") or "").strip()
    tracking_id = str(raw.get("trackingId") or raw.get("tracking_id") or "").strip()
    if not instance_url or not tracking_id:
        return None
    return ClientConfig(
        instance_url=instance_url,
        tracking_id=tracking_id,
        nonce=str(raw.get("nonce") or ""),
        submit_url=str(raw.get("submitUrl") or raw.get("submit_url") or ""),
    )


class VendorForm(Protocol):
    form_element: Tag

    def on_validate(self, callback: Callable[[bool], None]) -> Subscription: ...

    def on_success(self, callback: Callable[[dict[str, Any], str | None], bool]) -> Subscription: ...

    def submittable(self, flag: bool) -> None: ...


class FormsLibrary(Protocol):
    def when_rendered(self, callback: Callable[[VendorForm], None]) -> Subscription: ...

    def when_ready(self, callback: Callable[[VendorForm], None]) -> Subscription: ...

    async def load_form(self, base_url: str, tracking_id: str, form_id: str, form_element: Tag) -> None: ...


class Navigator(Protocol):
    def assign(self, url: str) -> None: ...


class Submitter(Protocol):
    async def submit(self, form_id: str, values: Mapping[str, Any]) -> dict[str, Any]: ...


SuccessOverride = Callable[[Tag, dict[str, Any]], bool]


class ProxySubmitter:
    """Posts form values to the site's submission endpoint."""

    def __init__(self, submit_url: str, nonce: str, *, timeout: float = 15.0) -> None:
        self.submit_url = submit_url
        self.nonce = nonce
        self.timeout = timeout

    async def submit(self, form_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        data: dict[str, Any] = {
            key: list(value) if isinstance(value, (list, tuple)) else value
            for key, value in values.items()
        }
        data["formId"] = form_id
        data["nonce"] = self.nonce
        headers = {"X-CSRF-Token": self.nonce, "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.submit_url, data=data, headers=headers)
        except httpx.HTTPError as exc:
            raise ProxySubmitError(str(exc) or "Unable to reach the submission endpoint.") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if response.status_code >= 400 or not payload.get("success", False):
            message = str(payload.get("message") or f"Submission failed with HTTP {response.status_code}")
            raise ProxySubmitError(message, response.status_code)
        return payload


def _container_for(form_element: Tag) -> Tag | None:
    container = form_element.find_parent(class_=CONTAINER_CLASS)
    if container is not None:
        return container
    parent = form_element.parent
    if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
        return parent
    return None


def render_error(document: BeautifulSoup, container: Tag, message: str) -> None:
    """Replace a container's content with the in-page error box."""

    container.clear()
    box = document.new_tag("div", attrs={"class": [LOAD_ERROR_CLASS], "role": "alert"})
    first = document.new_tag("p")
    strong = document.new_tag("strong")
    strong.string = "Error:"
    first.append(strong)
    first.append(f" {message}")
    second = document.new_tag("p")
    second.string = "Please check the browser console for more details."
    box.append(first)
    box.append(second)
    container.append(box)


class FormLoader:
    def __init__(
        self,
        document: BeautifulSoup,
        library: FormsLibrary | None,
        config: ClientConfig | None,
        *,
        patcher: FormStylingPatcher | None = None,
        events: EventBus | None = None,
        navigator: Navigator | None = None,
        success_overrides: Mapping[str, SuccessOverride] | None = None,
        submitter: Submitter | None = None,
    ) -> None:
        self.document = document
        self.library = library
        self.config = config
        self.patcher = patcher or FormStylingPatcher()
        self.events = events or EventBus()
        self.navigator = navigator
        self.success_overrides = dict(success_overrides or {})
        if submitter is None and config is not None and config.submit_url:
            submitter = ProxySubmitter(config.submit_url, config.nonce)
        self.submitter = submitter
        self.subscriptions: list[Subscription] = []
        self._in_flight: set[int] = set()

    # -- page level ------------------------------------------------------

    def form_elements(self) -> list[Tag]:
        return self.document.select(FORM_SELECTOR)

    def display_error(self, message: str) -> None:
        containers = self.document.find_all(class_=CONTAINER_CLASS)
        for container in containers:
            render_error(self.document, container, message)
        log_warning("Form loader error displayed", message=message, containers=len(containers))

    def _require_ready(self) -> tuple[FormsLibrary, ClientConfig]:
        if self.config is None:
            raise ClientConfigMissing(CONFIG_MISSING_MESSAGE)
        if self.library is None:
            raise FormLibraryLoadError(LIBRARY_MISSING_MESSAGE)
        return self.library, self.config

    async def start(self) -> bool:
        """Register library hooks and load every form on the page."""

        try:
            library, config = self._require_ready()
        except ClientLoaderError as exc:
            self.display_error(str(exc))
            return False

        try:
            self.subscriptions.append(library.when_rendered(self._on_rendered))
            self.subscriptions.append(library.when_ready(self._on_ready))
        except Exception as exc:
            log_error("Failed to register form library hooks", error=str(exc))
            self.display_error(FORM_LOAD_FAILED_MESSAGE)
            return False

        groups: dict[str, list[Tag]] = {}
        for element in self.form_elements():
            form_id = str(element.get("data-id", "")).strip()
            if form_id:
                groups.setdefault(form_id, []).append(element)
        if not groups:
            log_debug("No forms found on page")
            return True

        results = await asyncio.gather(
            *(self._load_group(library, config, form_id, elements) for form_id, elements in groups.items())
        )
        return all(results)

    async def _load_group(
        self,
        library: FormsLibrary,
        config: ClientConfig,
        form_id: str,
        elements: list[Tag],
    ) -> bool:
        # The library locates its target by id, so only one element may carry it at a time.
        dom_id = f"mktoForm_{form_id}"
        for element in elements:
            if element.get("id") == dom_id:
                del element["id"]

        ok = True
        for element in elements:
            element["id"] = dom_id
            try:
                await library.load_form(config.instance_url, config.tracking_id, form_id, element)
            except Exception as exc:
                ok = False
                log_error("Form failed to load", form_id=form_id, error=str(exc))
                container = _container_for(element)
                if container is not None:
                    render_error(self.document, container, FORM_LOAD_FAILED_MESSAGE)
            finally:
                if element.has_attr("id"):
                    del element["id"]
        log_debug("Form group loaded", form_id=form_id, count=len(elements), ok=ok)
        return ok

    # -- library hooks ---------------------------------------------------

    def _on_rendered(self, form: VendorForm) -> None:
        self.patcher.attach(form.form_element)

    def _on_ready(self, form: VendorForm) -> None:
        self.subscriptions.append(form.on_validate(lambda valid: self.handle_validate(form, valid)))
        self.subscriptions.append(
            form.on_success(lambda values, follow_up_url=None: self.handle_success(form.form_element, values))
        )

    def handle_validate(self, form: VendorForm, valid: bool) -> None:
        if not valid:
            return
        form.submittable(True)

    def handle_success(self, form_element: Tag, values: Mapping[str, Any]) -> bool:
        """Run the confirmation flow; return whether the vendor default should run."""

        form_id = form_element.get("data-id")
        values = dict(values)
        self.events.dispatch(SUCCESS_EVENT, {"values": values, "formId": form_id})

        override = self.success_overrides.get(str(form_id))
        if override is not None:
            return bool(override(form_element, values))

        confirmation_type = form_element.get("data-confirmation-type")
        if confirmation_type == "message":
            form_element["style"] = "display: none;"
            container = _container_for(form_element)
            success = container.find(class_="form-block-success") if container is not None else None
            if success is not None:
                success["style"] = "display: block;"
            return False

        redirect_url = form_element.get("data-link")
        if confirmation_type == "redirect" and redirect_url:
            if self.navigator is not None:
                self.navigator.assign(str(redirect_url))
            log_info("Redirecting after form success", form_id=form_id)
            return False

        return True

    # -- proxied submission ----------------------------------------------

    async def submit(self, form_element: Tag, values: Mapping[str, Any]) -> bool | None:
        """Submit through the site proxy; ``None`` when a submission is already running."""

        key = id(form_element)
        if key in self._in_flight:
            log_debug("Ignoring duplicate submission", form_id=form_element.get("data-id"))
            return None
        if self.submitter is None:
            raise ClientConfigMissing(CONFIG_MISSING_MESSAGE)

        form_id = str(form_element.get("data-id", ""))
        self._in_flight.add(key)
        try:
            await self.submitter.submit(form_id, values)
        except ProxySubmitError as exc:
            log_warning("Proxied submission failed", form_id=form_id, error=exc.message)
            self.events.dispatch(ERROR_EVENT, {"error": exc.message, "formId": form_id})
            container = _container_for(form_element)
            error_node = container.find(class_="form-block-error") if container is not None else None
            if error_node is not None:
                error_node["style"] = "display: block;"
            return False
        finally:
            self._in_flight.discard(key)

        self.handle_success(form_element, values)
        return True
