"""Shared constants for Arugio. All game-wide configuration lives here."""

# --- Display ---
SCREEN_WIDTH = 1280
SCREEN_HEIGHT = 720
FPS = 60
PIXELS_PER_UNIT = 32  # screen pixels per world unit

# --- Simulation ---
SERVER_TICK_RATE = 30  # server ticks per second
SERVER_TICK_DURATION_MS = 1000 // SERVER_TICK_RATE

# --- Physics ---
VELOCITY_RATE = 2.0     # exponential approach rate of velocity toward target
POSITION_SCALE = 15.0   # world units per second at velocity 1.0

# --- Balls ---
BALL_RADIUS = 0.5         # world units
MIN_UNOWNED_BALLS = 3     # server keeps at least this many autonomous balls
SPAWN_EXTENT = 5.0        # new balls spawn in [-SPAWN_EXTENT, SPAWN_EXTENT] per axis
FIRST_BALL_ID = 1
MAX_BALL_ID = 0xFFFFFFFF  # ids travel as u32

# --- Input ---
POINTER_DEADZONE = 30  # pixels from screen centre with no thrust

# --- Camera ---
CAMERA_VELOCITY_LEAD = 1.0  # world units of look-ahead per unit of velocity

# --- Networking ---
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9001
PROTOCOL_VERSION = 1
MAX_PACKET_SIZE = 4096
CONNECT_RETRY_MS = 1000
HEARTBEAT_INTERVAL_MS = 1000       # send a heartbeat after this much silence
CONNECTION_TIMEOUT_MS = 10000      # drop a peer after this much silence
MAX_QUEUED_MESSAGES = 1024         # per unreliable inbound channel, oldest dropped

# --- Reliable channels ---
RELIABLE_BANDWIDTH = 4096          # bytes per second
RELIABLE_BURST_BANDWIDTH = 1024    # bytes
RELIABLE_INIT_SEND = 512           # bytes available before the first refill
RELIABLE_SEND_WINDOW = 1024        # max unacked messages in flight
RELIABLE_RECV_WINDOW = 1024        # max sequence distance buffered ahead
RELIABLE_INITIAL_RTT_MS = 200
RELIABLE_MAX_RTT_MS = 2000
RELIABLE_RTT_UPDATE_FACTOR = 0.1
RELIABLE_RTT_RESEND_FACTOR = 1.5
RELIABLE_MAX_MESSAGE_LEN = 1024    # bytes

# --- Colors (placeholder rendering) ---
COLOR_BG = (38, 69, 84)
COLOR_GRID = (48, 82, 98)
COLOR_BALL = (232, 112, 82)
COLOR_LOCAL_BALL = (250, 210, 90)
COLOR_DEBUG_TEXT = (200, 200, 200)
GRID_SPACING = 5  # world units between grid lines
