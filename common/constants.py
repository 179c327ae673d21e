"""Project-wide constants (file names, digest sizes, default settings)."""

DIGEST_BYTES: int = 32  # SHA-256
PUBLIC_KEY_BYTES: int = 32  # Ed25519
SIGNATURE_BYTES: int = 64

PEERS_FILE_NAME = "peers"
ACCESSIONS_FILE_NAME = "accessions"
PUBLICATIONS_DIR_NAME = "publications"
RECORD_FILE_NAME = "publication.json"
TIMESTAMPS_DIR_NAME = "timestamps"
ATTACHMENTS_DIR_NAME = "attachments"
CONTENT_TYPE_SUFFIX = ".type"
KEYPAIR_FILE_NAME = "keypair.json"

DEFAULT_ARCHIVE_DIRECTORY = "/app/data/archive"
DEFAULT_ARCHIVE_HOSTNAME = "localhost"
DEFAULT_REPLICATION_INTERVAL_SECONDS = 60
DEFAULT_PEER_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_ARCHIVE_PORT = 8000

DEFAULT_ATTACHMENT_CONTENT_TYPE = "application/octet-stream"
