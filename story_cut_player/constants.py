"""All magic numbers and configuration constants."""

DEFAULT_MEDIA_DURATION = 2.0        # seconds a [[MEDIA]] step holds without duration=
DEFAULT_HOLD_DURATION = 3.0         # seconds a [[HOLD]] step holds without duration=
SECONDS_PER_CHARACTER = 0.08        # speech-rate estimate when audio duration is unknown
MIN_ESTIMATED_DURATION = 1.0        # floor for the per-step speech estimate
DEFAULT_TRANSPARENCY = 0.2          # overlay alpha when COLOR has no TRAN
DEFAULT_FADE_DURATION = 3.0
MIN_FADE_DURATION = 0.1
DEFAULT_PAN_DISTANCE = 25           # percent
DEFAULT_PAN_DURATION = 4.0
DEFAULT_ZOOM_SCALE = 1.5
DEFAULT_ZOOM_DURATION = 3.5
LEGACY_ZOOM_DEFAULT = (1.1, 1.0)    # Z-OUT without scale= -> (start, end)
LEGACY_ZOOM_MIN_START = 1.2
LEGACY_ZOOM_START_FACTOR = 2.0

EMBER_TAG = "EMBER VOICE"
NARRATOR_TAG = "NARRATOR"

# Overlay colors applied while a voice speaks, unless a COLOR action overrides
ROLE_OVERLAY_COLORS = {
    "ember": "#ff0000",
    "narrator": "#0000ff",
    "contributor": "#00ff00",
}

PREFERENCES = ("recorded", "personal", "text")
PREFERENCE_ALIASES = {"synth": "personal"}
DEFAULT_PREFERENCE = "recorded"
NO_MESSAGE_IDS = ("", "null", "none", "no-audio")
SEGMENT_KEY_TEXT_LENGTH = 50

# Legacy recording matcher (tunable, not a contract)
SIMILARITY_MIN_WORD_LENGTH = 4      # "significant" words are at least this long
SIMILARITY_MIN_MATCHING_WORDS = 2
SIMILARITY_MIN_OVERLAP = 0.5

TTS_RATE = "+0%"
PLAYER_TICK_SECONDS = 0.05          # clocked playback position granularity
LOADING_MESSAGE = "Preparing story..."
PREFERENCES_FILE = "preferences.json"
VERSION = "0.1.0"
