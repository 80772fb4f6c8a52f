"""Constantes partagées pour éviter les valeurs magiques dans le code.

Codes de statut HTTP, bornes de validation des propositions et limites des appels à l'index
vectoriel.
"""

# Codes de statut HTTP courants
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_MULTI_STATUS = 207
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_METHOD_NOT_ALLOWED = 405
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE_ENTITY = 422
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_NOT_IMPLEMENTED = 501
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503
HTTP_GATEWAY_TIMEOUT = 504

HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600

# Propositions
TITLE_MAX_LEN = 100
CONTENT_MAX_LEN = 5000
DEFAULT_CATEGORY = "general"
DEFAULT_RISK = "medium"
DEFAULT_STATUS = "pending"
PROPOSAL_STATUSES = ("pending", "approved", "rejected", "withdrawn", "archived")
RISK_LEVELS = ("low", "medium", "high")

# Recherche
MIN_TOP_K = 1
MAX_TOP_K = 100
DEFAULT_TOP_K = 5
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000

# Analyse
SUMMARY_FALLBACK_MAX_LEN = 200
HEURISTIC_SUMMARY_MAX_LEN = 300
