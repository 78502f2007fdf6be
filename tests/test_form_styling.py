from bs4 import BeautifulSoup

from formblock.services.dom_events import DomObserver, EventRegistry, has_class
from formblock.services.form_styling import (
    ACTIVE_CLASS,
    FILLED_CLASS,
    FormStylingPatcher,
    attach_field_state,
    clean_vendor_layout,
    pair_labels,
)

VENDOR_MARKUP = """
<html><head>
<style id="mktoForms2BaseStyle">.mktoForm{}</style>
<style id="mktoForms2ThemeStyle">.mktoForm{}</style>
</head><body>
<div id="form-block-abc" class="form-block">
<form id="mktoForm_42" class="mktoForm" data-id="42" data-disable-default-styles="true" style="width: 400px;">
  <div class="mktoFormRow">
    <div class="mktoFieldWrap mktoHasWidth" style="width: 300px;">
      <label for="Email" class="mktoLabel"><div class="mktoAsterix">*</div>Email</label>
      <div class="mktoGutter"></div>
      <input id="Email" name="Email" type="email" class="mktoField" value="">
    </div>
  </div>
  <div class="mktoFormRow">
    <div class="mktoFieldWrap">
      <label for="Country" class="mktoLabel">Country</label>
      <select id="Country" name="Country" class="mktoField">
        <option value="">Select...</option>
        <option value="NZ" selected>New Zealand</option>
      </select>
    </div>
  </div>
  <div class="mktoFormRow">
    <div class="mktoFieldWrap">
      <div class="mktoLogicalField mktoRadioList">
        <input type="radio" id="r1" name="Size" value="S"><label for="r1">S</label>
      </div>
    </div>
  </div>
  <div class="mktoFormRow">
    <div class="mktoFieldWrap">
      <label for="Interests" class="mktoLabel">Interests</label>
      <select id="Interests" name="Interests" multiple>
        <option value="a">Alpha</option>
        <option value="b">Beta</option>
      </select>
    </div>
  </div>
  <div class="mktoClear"></div>
  <div class="mktoButtonRow">
    <span class="mktoButtonWrap mktoDownloadButton" style="margin-left: 10px;">
      <button type="submit" class="mktoButton">Submit</button>
    </span>
  </div>
</form>
</div>
</body></html>
"""


def _document():
    soup = BeautifulSoup(VENDOR_MARKUP, "html.parser")
    return soup, soup.select_one("form.mktoForm")


def test_clean_vendor_layout_removes_vendor_styling():
    soup, form = _document()

    mutations = clean_vendor_layout(form, soup)

    assert mutations > 0
    assert not form.has_attr("style")
    assert soup.find(id="mktoForms2BaseStyle") is None
    assert soup.find(id="mktoForms2ThemeStyle") is None
    assert form.select(".mktoAsterix, .mktoGutter, .mktoClear") == []
    assert not form.select_one(".mktoFieldWrap").has_attr("style")
    button = form.find("button")
    assert not has_class(button, "mktoButton")
    wrap = button.parent
    assert not wrap.has_attr("style")
    assert not has_class(wrap, "mktoButtonWrap")
    assert not has_class(wrap, "mktoDownloadButton")
    radio_list = form.select_one(".mktoRadioList")
    assert has_class(radio_list.parent.parent, "radio-list-fix")
    assert has_class(form.find("select").parent, "form-select-wrapper")


def test_clean_vendor_layout_removes_vendor_stylesheets_even_with_default_styles_enabled():
    soup, form = _document()
    form["data-disable-default-styles"] = "false"

    clean_vendor_layout(form, soup)

    assert soup.find(id="mktoForms2BaseStyle") is None
    assert soup.find(id="mktoForms2ThemeStyle") is None


def test_clean_vendor_layout_second_pass_is_a_no_op():
    soup, form = _document()
    clean_vendor_layout(form, soup)

    assert clean_vendor_layout(form, soup) == 0


def test_pair_labels_suffixes_ids_and_wraps_pairs():
    soup, form = _document()

    mutations = pair_labels(form, soup, suffix="_x1")

    assert mutations == 2
    email = form.find("input", attrs={"name": "Email"})
    assert email["id"] == "Email_x1"
    wrapper = email.parent
    assert has_class(wrapper, "form-field-wrapper")
    assert wrapper.find("label")["for"] == "Email_x1"
    assert form.find("select", attrs={"name": "Country"})["id"] == "Country"
    assert pair_labels(form, soup, suffix="_x2") == 0


def test_pair_labels_skips_label_wrapping_its_own_control():
    soup = BeautifulSoup(
        '<form class="mktoForm" data-id="42">'
        '<label for="Name">Name <input id="Name" name="Name" type="text"></label>'
        "</form>",
        "html.parser",
    )
    form = soup.form

    assert pair_labels(form, soup, suffix="_x1") == 0

    label = form.find("label")
    assert label.parent is form
    assert label.find("input")["id"] == "Name"
    assert form.select(".form-field-wrapper") == []
    assert len(list(form.descendants)) == 3

def test_field_state_tracks_focus_and_value():
    soup, form = _document()
    events = EventRegistry()
    pair_labels(form, soup, suffix="_x1")

    bound = attach_field_state(form, events)

    email = form.find("input", attrs={"name": "Email"})
    country = form.find("select", attrs={"name": "Country"})
    assert bound == 2
    assert has_class(country.parent, FILLED_CLASS)
    assert not has_class(email.parent, FILLED_CLASS)

    events.dispatch(email, "focus")
    assert has_class(email.parent, ACTIVE_CLASS)

    email["value"] = "a@example.com"
    events.dispatch(email, "blur")
    assert not has_class(email.parent, ACTIVE_CLASS)
    assert has_class(email.parent, FILLED_CLASS)

    assert attach_field_state(form, events) == 0
    assert events.listener_count(email, "focus") == 1


def test_patcher_attach_is_idempotent_and_builds_multiselect():
    soup, form = _document()
    patcher = FormStylingPatcher(EventRegistry(), DomObserver())

    assert patcher.attach(form) > 0
    assert len(patcher.widgets) == 1
    assert form.select_one(".form-multiselect__display") is not None

    assert patcher.patch(form) == 0
    assert len(patcher.widgets) == 1


def test_patcher_styles_nodes_added_later():
    soup, form = _document()
    observer = DomObserver()
    patcher = FormStylingPatcher(EventRegistry(), observer)
    patcher.attach(form)

    row = BeautifulSoup(
        '<div class="mktoFormRow"><div class="mktoFieldWrap mktoHasWidth" style="width: 10px;">'
        '<label for="Phone">Phone</label><div class="mktoOffset"></div>'
        '<input id="Phone" name="Phone" type="tel"></div></div>',
        "html.parser",
    ).div
    form.append(row)
    delivered = observer.report_added([row])

    assert delivered == 1
    phone = form.find("input", attrs={"name": "Phone"})
    assert phone["id"].startswith("Phone_")
    assert has_class(phone.parent, "form-field-wrapper")
    assert form.select(".mktoOffset") == []
    assert not row.select_one(".mktoHasWidth").has_attr("style")
    assert patcher.events.listener_count(phone, "focus") == 1


def test_observer_ignores_nodes_outside_observed_root():
    soup, form = _document()
    observer = DomObserver()
    seen = []
    observer.observe(form, seen.append)

    outside = soup.new_tag("p")
    soup.body.append(outside)

    assert observer.report_added([outside]) == 0
    assert seen == []


def test_detach_stops_observing_form():
    soup, form = _document()
    observer = DomObserver()
    patcher = FormStylingPatcher(EventRegistry(), observer)
    patcher.attach(form)
    patcher.attach(form)

    assert observer.is_observing(form)

    patcher.detach(form)
    row = soup.new_tag("div", attrs={"class": ["mktoClear"]})
    form.append(row)

    assert not observer.is_observing(form)
    assert observer.report_added([row]) == 0
    assert form.select_one(".mktoClear") is row
