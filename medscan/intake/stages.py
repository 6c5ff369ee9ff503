# medscan/intake/stages.py
from enum import Enum


class SessionStage(str, Enum):
    INTAKE = "intake"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    REPORTING = "reporting"
    ERROR = "error"
