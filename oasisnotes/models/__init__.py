from .patient import Patient
from .note import Note, LocalAudio, RemoteAudio
from .section_g import SectionG
