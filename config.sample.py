# Harmony Hub Configuration Template
# Rename this file to 'config.py' and fill in your details

# HUB Connection Details
HUB_IP = "192.168.1.X"      # Your Harmony Hub IP Address
HUB_PORT = 8088

# Timeouts (seconds)
CONNECT_TIMEOUT = 10        # HTTP bootstrap and WebSocket handshake
SEND_TIMEOUT = 30           # Wait for a reply to each request
HEARTBEAT_INTERVAL = 50     # Keep-alive frame period, must stay below 60

# Bootstrap attempts before giving up (1 = no retry)
BOOTSTRAP_ATTEMPTS = 1
