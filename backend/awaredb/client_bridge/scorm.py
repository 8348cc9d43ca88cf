"""
SCORM 1.2 and 2004 runtime shims.

Progressive `score.raw` updates are only stored. A send is attempted when
`lesson_status` becomes completed or passed, on Commit and on Finish.
Element names are accepted with or without the `cmi.` prefix.

`static/tracker.js` carries the browser copy of this state machine. The
mapping tables and status rules here must change in lockstep with it;
`tests/test_tracker_script.py` compares the two.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .bridge import ScoreBridge, parse_score

SCORM_TRUE = "true"
NO_ERROR = "0"

COMPLETION_STATUSES = {"completed", "passed"}

# SCORM 2004 data model element -> SCORM 1.2 element.
SCORM_2004_TO_12 = {
    "cmi.score.raw": "cmi.core.score.raw",
    "cmi.score.min": "cmi.core.score.min",
    "cmi.score.max": "cmi.core.score.max",
    "cmi.completion_status": "cmi.core.lesson_status",
    "cmi.success_status": "cmi.core.lesson_status",
    "cmi.location": "cmi.core.lesson_location",
    "cmi.session_time": "cmi.core.session_time",
    "cmi.learner_id": "cmi.core.student_id",
    "cmi.learner_name": "cmi.core.student_name",
    "cmi.suspend_data": "cmi.suspend_data",
}

# Only statuses meaningful on the 1.2 side are forwarded.
_FORWARDED_STATUS_VALUES = {
    "cmi.completion_status": {"completed", "incomplete", "not attempted"},
    "cmi.success_status": {"passed", "failed"},
}


def normalize_element(element: str) -> str:
    element = (element or "").strip()
    if element and not element.startswith("cmi."):
        return f"cmi.{element}"
    return element


class Scorm12Api:
    """In-memory SCORM 1.2 runtime (`window.API`)."""

    def __init__(self, bridge: ScoreBridge) -> None:
        self.bridge = bridge
        self.model: Dict[str, str] = {
            "cmi.core.score.raw": "",
            "cmi.core.score.min": "0",
            "cmi.core.score.max": "100",
            "cmi.core.lesson_status": "incomplete",
            "cmi.core.lesson_location": "",
            "cmi.core.session_time": "",
            "cmi.suspend_data": "",
            "cmi.core.student_id": bridge.tracking_link_id,
            "cmi.core.student_name": "",
        }

    def current_score(self) -> Optional[float]:
        return parse_score(self.model.get("cmi.core.score.raw"))

    def _send_if_ready(self) -> None:
        score = self.current_score()
        if score is not None:
            self.bridge.submit(score)

    def LMSInitialize(self, param: str = "") -> str:  # noqa: N802
        return SCORM_TRUE

    def LMSFinish(self, param: str = "") -> str:  # noqa: N802
        self._send_if_ready()
        return SCORM_TRUE

    def LMSGetValue(self, element: str) -> str:  # noqa: N802
        return self.model.get(normalize_element(element), "")

    def LMSSetValue(self, element: str, value: Any) -> str:  # noqa: N802
        key = normalize_element(element)
        text = "" if value is None else str(value)
        self.model[key] = text
        if key == "cmi.core.lesson_status" and text in COMPLETION_STATUSES:
            self._send_if_ready()
        return SCORM_TRUE

    def LMSCommit(self, param: str = "") -> str:  # noqa: N802
        self._send_if_ready()
        return SCORM_TRUE

    def LMSGetLastError(self) -> str:  # noqa: N802
        return NO_ERROR

    def LMSGetErrorString(self, error_code: str = "") -> str:  # noqa: N802
        return "No error"

    def LMSGetDiagnostic(self, error_code: str = "") -> str:  # noqa: N802
        return "No diagnostic information available"

    def on_unload(self) -> bool:
        return self.bridge.on_unload(self.current_score())


class Scorm2004Api:
    """`window.API_1484_11`: keeps its own model and forwards to the 1.2 shim."""

    def __init__(self, scorm12: Scorm12Api) -> None:
        self.scorm12 = scorm12
        self.model: Dict[str, str] = {}

    def Initialize(self, param: str = "") -> str:  # noqa: N802
        return self.scorm12.LMSInitialize(param)

    def Terminate(self, param: str = "") -> str:  # noqa: N802
        return self.scorm12.LMSFinish(param)

    def GetValue(self, element: str) -> str:  # noqa: N802
        key = normalize_element(element)
        if key in self.model:
            return self.model[key]
        mapped = SCORM_2004_TO_12.get(key)
        return self.scorm12.LMSGetValue(mapped) if mapped else ""

    def SetValue(self, element: str, value: Any) -> str:  # noqa: N802
        key = normalize_element(element)
        text = "" if value is None else str(value)
        self.model[key] = text
        mapped = SCORM_2004_TO_12.get(key)
        allowed = _FORWARDED_STATUS_VALUES.get(key)
        if mapped and (allowed is None or text in allowed):
            self.scorm12.LMSSetValue(mapped, text)
        return SCORM_TRUE

    def Commit(self, param: str = "") -> str:  # noqa: N802
        return self.scorm12.LMSCommit(param)

    def GetLastError(self) -> str:  # noqa: N802
        return self.scorm12.LMSGetLastError()

    def GetErrorString(self, error_code: str = "") -> str:  # noqa: N802
        return self.scorm12.LMSGetErrorString(error_code)

    def GetDiagnostic(self, error_code: str = "") -> str:  # noqa: N802
        return self.scorm12.LMSGetDiagnostic(error_code)
