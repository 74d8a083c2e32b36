"""
Recover the download form from the decoded token.
"""

import re
import logging
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from .models import SynthesizedForm

logger = logging.getLogger(__name__)

# Greedy and DOTALL: the unpacked source spreads the form over several lines
FORM_MARKUP_RE = re.compile(r"<form.*>.*</form>", re.DOTALL)

FIELD_TAGS = ["input", "select", "textarea"]


def extract_form_markup(decoded: str) -> Optional[str]:
    """Cut the <form>...</form> fragment out of the decoded token."""
    match = FORM_MARKUP_RE.search(decoded or "")
    if not match:
        logger.error("❌ Decoded token does not contain a download form")
        return None
    return match.group(0)


def synthesize_form(markup: str, fallback_action: str) -> Optional[SynthesizedForm]:
    """
    Build the submission for a form fragment.

    The action defaults to ``fallback_action`` (the page the form came from)
    when the form has none. Fields keep document order; fields without a
    name are dropped.
    """
    form = BeautifulSoup(markup, "html.parser").find("form")
    if form is None or form.name.lower() != "form":
        logger.error("❌ No form element in the decoded markup")
        return None

    fields: List[Tuple[str, str]] = []
    for element in form.find_all(FIELD_TAGS):
        name = element.get("name")
        if name:
            fields.append((name, element.get("value") or ""))

    return SynthesizedForm(
        action_url=form.get("action") or fallback_action,
        fields=fields,
    )
