"""Centralized constants for Stack MCP to eliminate duplicate strings."""

# Docker Labels
DOCKER_COMPOSE_PROJECT = "com.docker.compose.project"

# Compose file variants, in lookup order
COMPOSE_FILE_VARIANTS = (
    "docker-compose.yaml",
    "docker-compose.yml",
    "compose.yaml",
    "compose.yml",
)
DEFAULT_COMPOSE_FILE = COMPOSE_FILE_VARIANTS[0]
ENV_FILE = ".env"
BACKUP_FILE = ".backup.json"

# Default filesystem locations
DEFAULT_STACKS_PATH = "/opt/stacks"
DEFAULT_CONFIG_FILE = "/etc/stack-mcp/config.json"
DEFAULT_UPDATE_FILE = "/etc/stack-mcp/updates.json"

# Container snapshot format used by `docker ps`
CONTAINER_PS_FORMAT = "{{.Names}}\t{{.State}}\t{{.Status}}"

# Persisted update record fields
LAST_CHECK = "lastCheck"
UPDATES = "updates"
HAS_UPDATES = "hasUpdates"

# Common Field Names
STACK_NAME = "stack_name"
STACKS_PATH = "stacks_path"
FORMATTED_OUTPUT = "formatted_output"

# Dockerfile written for build contexts that do not exist yet
DEFAULT_DOCKERFILE = """FROM nginx:alpine
COPY . /usr/share/nginx/html
EXPOSE 80
"""

# Uptime display values
UPTIME_STOPPED = "Stopped"
UPTIME_UNAVAILABLE = "N/A"
