"""All magic numbers and configuration constants."""

# Production phases
PHASE_VOICE = "voice-generation"
PHASE_MEDIA = "media-production"
PHASE_MIXING = "mixing-editing"
PHASES = (PHASE_VOICE, PHASE_MEDIA, PHASE_MIXING)

# Phase / section statuses
STATUS_IDLE = "idle"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
STATUSES = (STATUS_IDLE, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_ERROR)

DEFAULT_SPEAKER = "Narrator"                 # speaker used for lines with no speaker
DEFAULT_VOICE_NAME = "Kore"                  # system voice for unassigned speakers
DEFAULT_MIME_TYPE = "audio/wav"

# Raw PCM defaults (clips delivered without a container)
PCM_SAMPLE_RATE = 24000
PCM_CHANNELS = 1
PCM_SAMPLE_WIDTH = 2                         # bytes (16-bit)

# Mixing
NORMALIZE_PEAK_CEILING = 0.891               # -1 dBFS, linear
COMPRESSOR_THRESHOLD_DB = -18.0              # mild compression
COMPRESSOR_RATIO = 2.5
COMPRESSOR_ATTACK_MS = 10.0
COMPRESSOR_RELEASE_MS = 200.0
PREVIEW_SILENCE_MS = 100                     # start/end silence for quick previews

# Media production
BGM_DURATION_SECONDS = 180                   # generated BGM length for a full run
BGM_REGEN_DURATION_SECONDS = 30              # generated BGM length for a single regen
BGM_REGEN_MOOD = "peaceful"
SFX_DURATION_SECONDS = 5
COVER_ASPECT_RATIO = "1:1"
MEDIA_LIBRARY_CAPACITY = 200                 # most recent generated items kept

# Draft persistence
DRAFT_KEY = "project_creator_draft"
DRAFT_SIZE_THRESHOLD = 4 * 1024 * 1024       # bytes: lossy pass above this
DRAFT_STORE_CAPACITY = 5 * 1024 * 1024       # bytes: hard cap of the draft slot
DRAFT_AUTOSAVE_DELAY = 1.0                   # seconds: debounce for autosave

# Local TTS backend (edge-tts)
TTS_RETRY_COUNT = 3                          # max attempts per line
TTS_RETRY_BASE_DELAY = 1.0                   # seconds: base delay for exponential backoff
TTS_RATE = "+0%"
EDGE_DEFAULT_VOICE = "en-US-AriaNeural"      # used when no system voice resolves
MUSIC_LOOP_SECONDS = 30                      # duration of the procedural ambient loop

# Remote service
SERVICE_URL_ENV = "NARRATION_SERVICE_URL"
DEFAULT_SERVICE_URL = "http://localhost:3001/api"
SERVICE_TIMEOUT = 300.0                      # seconds: per request
MIX_TIMEOUT = 600.0                          # seconds: remote mixing of a full project
OUTPUT_DIR = "output"
VERSION = "0.1.0"

# User-facing messages
MSG_ALL_SEGMENTS_FAILED = "All audio segments failed to generate"
MSG_GENERATION_FAILED = "Generation failed"
MSG_ALL_SECTIONS_FAILED = "All sections failed"
MSG_SECTIONS_FAILED = "{count} section(s) failed"
MSG_NO_VOICE_DATA = "No voice data available"
