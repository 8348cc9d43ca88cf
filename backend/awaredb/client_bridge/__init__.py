"""
Client-side scoring protocols, normalised onto one final-score submission.

`static/tracker.js` is what browsers run; the classes here implement the
same state machine for headless clients and tests.
"""

from .bridge import ScoreBridge
from .scorm import Scorm12Api, Scorm2004Api

__all__ = ["ScoreBridge", "Scorm12Api", "Scorm2004Api"]
