import asyncio

import httpx
import pytest
from bs4 import BeautifulSoup

from formblock.schemas.blocks import BlockAttributes
from formblock.services import client_loader
from formblock.services.block_renderer import render_block
from formblock.services.client_loader import (
    CONFIG_MISSING_MESSAGE,
    ERROR_EVENT,
    LIBRARY_MISSING_MESSAGE,
    SUCCESS_EVENT,
    ClientConfig,
    FormLoader,
    ProxySubmitError,
    ProxySubmitter,
    load_client_config,
)
from formblock.services.dom_events import EventBus, Subscription
from formblock.services.form_settings import FormSettings

CONFIG = ClientConfig(instance_url="https://app-xy12.example-vendor.com", tracking_id="123-ABC-456")


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _document():
    settings = FormSettings.defaults()
    blocks = [
        render_block(BlockAttributes(formId="42"), settings, instance_id="form-block-one"),
        render_block(
            BlockAttributes(formId="42", redirectUrl="https://www.example.com/thanks"),
            settings,
            instance_id="form-block-two",
        ),
        render_block(BlockAttributes(formId="7"), settings, instance_id="form-block-three"),
    ]
    return BeautifulSoup("<html><body>" + "".join(block.html for block in blocks) + "</body></html>", "html.parser")


def _form(soup, instance_id):
    return soup.find(id=instance_id).find("form")


class FakeVendorForm:
    def __init__(self, element) -> None:
        self.form_element = element
        self.validate_callbacks = []
        self.success_callbacks = []
        self.submittable_calls = []

    def on_validate(self, callback):
        self.validate_callbacks.append(callback)
        return Subscription()

    def on_success(self, callback):
        self.success_callbacks.append(callback)
        return Subscription()

    def submittable(self, flag):
        self.submittable_calls.append(flag)


class FakeLibrary:
    def __init__(self, document, *, failing_ids=()) -> None:
        self.document = document
        self.failing_ids = set(failing_ids)
        self.rendered_callbacks = []
        self.ready_callbacks = []
        self.log = []
        self.forms = []
        self.calls = []

    def when_rendered(self, callback):
        self.rendered_callbacks.append(callback)
        return Subscription()

    def when_ready(self, callback):
        self.ready_callbacks.append(callback)
        return Subscription()

    async def load_form(self, base_url, tracking_id, form_id, form_element):
        self.calls.append((base_url, tracking_id, form_id))
        holders = self.document.select(f"#mktoForm_{form_id}")
        self.log.append(("start", form_id, len(holders), holders[0] is form_element if holders else False))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        if form_id in self.failing_ids:
            self.log.append(("fail", form_id))
            raise RuntimeError("vendor script error")
        form = FakeVendorForm(form_element)
        for callback in self.rendered_callbacks:
            callback(form)
        for callback in self.ready_callbacks:
            callback(form)
        self.forms.append(form)
        self.log.append(("end", form_id))


class RecordingPatcher:
    def __init__(self) -> None:
        self.attached = []

    def attach(self, form_element):
        self.attached.append(form_element.get("data-id"))
        return 0


class RecordingNavigator:
    def __init__(self) -> None:
        self.urls = []

    def assign(self, url):
        self.urls.append(url)


def test_load_client_config_requires_url_and_tracking_id():
    assert load_client_config(None) is None
    assert load_client_config({"url": "https://x"}) is None
    assert load_client_config({"trackingId": "123-ABC-456"}) is None

    config = load_client_config(
        {"url": "https://x", "trackingId": "123-ABC-456", "nonce": "n", "submitUrl": "/api/forms/submit"}
    )

    assert config == ClientConfig("https://x", "123-ABC-456", "n", "/api/forms/submit")


@pytest.mark.anyio
async def test_missing_config_renders_error_in_every_container():
    soup = _document()
    library = FakeLibrary(soup)

    ok = await FormLoader(soup, library, None).start()

    assert ok is False
    errors = soup.select(".form-block > .form-block-load-error")
    assert len(errors) == 3
    assert CONFIG_MISSING_MESSAGE in errors[0].get_text()
    assert soup.find("form") is None
    assert library.calls == []


@pytest.mark.anyio
async def test_missing_library_renders_error():
    soup = _document()

    ok = await FormLoader(soup, None, CONFIG).start()

    assert ok is False
    assert LIBRARY_MISSING_MESSAGE in soup.select_one(".form-block-load-error").get_text()


@pytest.mark.anyio
async def test_forms_sharing_an_id_load_serially():
    soup = _document()
    library = FakeLibrary(soup)
    patcher = RecordingPatcher()

    ok = await FormLoader(soup, library, CONFIG, patcher=patcher).start()

    assert ok is True
    forty_two = [entry for entry in library.log if entry[1] == "42"]
    assert [entry[0] for entry in forty_two] == ["start", "end", "start", "end"]
    for entry in library.log:
        if entry[0] == "start":
            assert entry[2] == 1
            assert entry[3] is True
    assert library.log.index(("start", "7", 1, True)) < library.log.index(("end", "42"))
    assert soup.select("[id^=mktoForm_]") == []
    assert sorted(patcher.attached) == ["42", "42", "7"]
    assert {call[:2] for call in library.calls} == {(CONFIG.instance_url, CONFIG.tracking_id)}


@pytest.mark.anyio
async def test_failed_load_only_affects_its_container():
    soup = _document()
    library = FakeLibrary(soup, failing_ids={"7"})

    ok = await FormLoader(soup, library, CONFIG, patcher=RecordingPatcher()).start()

    assert ok is False
    assert soup.find(id="form-block-three").select_one(".form-block-load-error") is not None
    assert soup.find(id="form-block-one").select_one(".form-block-load-error") is None
    assert len(library.forms) == 2


@pytest.mark.anyio
async def test_validate_hook_marks_only_valid_forms_submittable():
    soup = _document()
    library = FakeLibrary(soup)
    await FormLoader(soup, library, CONFIG, patcher=RecordingPatcher()).start()

    form = library.forms[0]
    form.validate_callbacks[0](False)
    assert form.submittable_calls == []

    form.validate_callbacks[0](True)
    assert form.submittable_calls == [True]


@pytest.mark.anyio
async def test_success_in_message_mode_reveals_confirmation():
    soup = _document()
    library = FakeLibrary(soup)
    events = EventBus()
    received = []
    events.subscribe(SUCCESS_EVENT, received.append)
    await FormLoader(soup, library, CONFIG, patcher=RecordingPatcher(), events=events).start()

    form = next(f for f in library.forms if f.form_element is _form(soup, "form-block-one"))
    result = form.success_callbacks[0]({"Email": "a@example.com"}, None)

    assert result is False
    assert received == [{"values": {"Email": "a@example.com"}, "formId": "42"}]
    assert form.form_element["style"] == "display: none;"
    assert soup.select_one("#form-block-success-form-block-one")["style"] == "display: block;"


@pytest.mark.anyio
async def test_success_in_redirect_mode_navigates():
    soup = _document()
    library = FakeLibrary(soup)
    navigator = RecordingNavigator()
    loader = FormLoader(soup, library, CONFIG, patcher=RecordingPatcher(), navigator=navigator)
    await loader.start()

    result = loader.handle_success(_form(soup, "form-block-two"), {"Email": "a@example.com"})

    assert result is False
    assert navigator.urls == ["https://www.example.com/thanks"]


def test_success_without_confirmation_type_defers_to_vendor():
    soup = _document()
    element = _form(soup, "form-block-three")
    del element["data-confirmation-type"]

    assert FormLoader(soup, None, CONFIG).handle_success(element, {}) is True


def test_success_override_takes_precedence():
    soup = _document()
    events = EventBus()
    calls = []

    def override(element, values):
        calls.append((element.get("data-id"), values))
        return True

    loader = FormLoader(soup, None, CONFIG, events=events, success_overrides={"42": override})
    result = loader.handle_success(_form(soup, "form-block-one"), {"Company": "Acme"})

    assert result is True
    assert calls == [("42", {"Company": "Acme"})]
    assert events.history[0][0] == SUCCESS_EVENT
    assert not _form(soup, "form-block-one").has_attr("style")


@pytest.mark.anyio
async def test_duplicate_submit_is_ignored_while_in_flight():
    soup = _document()

    class SlowSubmitter:
        def __init__(self) -> None:
            self.calls = 0
            self.release = asyncio.Event()

        async def submit(self, form_id, values):
            self.calls += 1
            await self.release.wait()
            return {"success": True}

    submitter = SlowSubmitter()
    loader = FormLoader(soup, None, CONFIG, submitter=submitter)
    element = _form(soup, "form-block-one")

    first = asyncio.create_task(loader.submit(element, {"Email": "a@example.com"}))
    await asyncio.sleep(0)
    second = await loader.submit(element, {"Email": "a@example.com"})
    submitter.release.set()

    assert second is None
    assert await first is True
    assert submitter.calls == 1
    assert soup.select_one("#form-block-success-form-block-one")["style"] == "display: block;"


@pytest.mark.anyio
async def test_failed_submit_dispatches_error_event():
    soup = _document()

    class FailingSubmitter:
        async def submit(self, form_id, values):
            raise ProxySubmitError("Invalid nonce.", 403)

    events = EventBus()
    loader = FormLoader(soup, None, CONFIG, events=events, submitter=FailingSubmitter())

    result = await loader.submit(_form(soup, "form-block-one"), {})

    assert result is False
    assert events.history == [(ERROR_EVENT, {"error": "Invalid nonce.", "formId": "42"})]
    assert soup.select_one("#form-block-error-form-block-one")["style"] == "display: block;"


class DummyResponse:
    def __init__(self, status_code, payload) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


def _install_client(monkeypatch, response):
    captured = {}

    class FakeClient:
        def __init__(self, *args, **kwargs) -> None:
            captured["timeout"] = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, data=None, headers=None):
            captured.update({"url": url, "data": data, "headers": headers})
            if isinstance(response, Exception):
                raise response
            return response

    monkeypatch.setattr(client_loader.httpx, "AsyncClient", FakeClient)
    return captured


@pytest.mark.anyio
async def test_proxy_submitter_posts_values_with_nonce(monkeypatch):
    captured = _install_client(monkeypatch, DummyResponse(200, {"success": True, "message": "ok"}))

    payload = await ProxySubmitter("/api/forms/submit", "tok").submit("42", {"Interests": ("a", "b")})

    assert payload["success"] is True
    assert captured["url"] == "/api/forms/submit"
    assert captured["data"] == {"Interests": ["a", "b"], "formId": "42", "nonce": "tok"}
    assert captured["headers"]["X-CSRF-Token"] == "tok"


@pytest.mark.anyio
async def test_proxy_submitter_raises_on_failure_envelope(monkeypatch):
    _install_client(monkeypatch, DummyResponse(403, {"success": False, "message": "Invalid nonce."}))

    with pytest.raises(ProxySubmitError) as excinfo:
        await ProxySubmitter("/api/forms/submit", "tok").submit("42", {})

    assert excinfo.value.message == "Invalid nonce."
    assert excinfo.value.status_code == 403


@pytest.mark.anyio
async def test_proxy_submitter_wraps_transport_errors(monkeypatch):
    _install_client(monkeypatch, httpx.ConnectError("refused"))

    with pytest.raises(ProxySubmitError):
        await ProxySubmitter("/api/forms/submit", "tok").submit("42", {})
