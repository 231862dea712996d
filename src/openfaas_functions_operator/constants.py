"""Constants for the OpenFaaS Functions Operator."""

# API Group
API_GROUP = "operato.rs"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_FUNCTION = "OpenFaaSFunction"
KIND_DEPLOYMENT = "Deployment"
KIND_SERVICE = "Service"

PLURAL_FUNCTION = "openfaasfunctions"
SINGULAR_FUNCTION = "openfaasfunction"
CRD_NAME = f"{PLURAL_FUNCTION}.{API_GROUP}"

# Labels
LABEL_FUNCTION = "faas_function"

# Annotations
ANNOTATION_LAST_APPLIED = f"{API_GROUP}/last-applied-spec"

# Key prefixes owned by cluster components, e.g. deployment.kubernetes.io/revision
SYSTEM_KEY_DOMAINS = ("kubernetes.io", "k8s.io")

# Finalizers
FINALIZER = f"{PLURAL_FUNCTION}.{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "openfaas-functions-operator"
CONTROLLER_NAME = "openfaas-functions-operator"

# Defaults
DEFAULT_FUNCTIONS_NAMESPACE = "openfaas-fn"
DEFAULT_SECRETS_MOUNT_PATH = "/var/openfaas/secrets"
DEFAULT_IMAGE = "docker.io/jadkhaddad/openfaas_functions_operato_rs"
DEFAULT_IMAGE_TAG = "latest"
ENV_PROCESS_NAME = "fprocess"
FUNCTION_PORT = 8080
FUNCTION_PORT_NAME = "http"
HEALTH_PATH = "/_/health"
TMP_VOLUME_NAME = "tmp"
TMP_MOUNT_PATH = "/tmp"
DESIRED_REPLICAS = 1

# Condition Types
COND_READY = "Ready"

# Condition Reasons
REASON_OK = "Ok"
REASON_INVALID_CRD_NAMESPACE = "InvalidCRDNamespace"
REASON_INVALID_FUNCTION_NAMESPACE = "InvalidFunctionNamespace"
REASON_CPU_QUANTITY = "CPUQuantity"
REASON_MEMORY_QUANTITY = "MemoryQuantity"
REASON_DEPLOYMENT_ALREADY_EXISTS = "DeploymentAlreadyExists"
REASON_DEPLOYMENT_NOT_READY = "DeploymentNotReady"
REASON_SERVICE_ALREADY_EXISTS = "ServiceAlreadyExists"
REASON_SECRETS_NOT_FOUND = "SecretsNotFound"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_DEPLOYMENT_CREATED = "DeploymentCreated"
EVENT_REASON_DEPLOYMENT_UPDATED = "DeploymentUpdated"
EVENT_REASON_SERVICE_CREATED = "ServiceCreated"
EVENT_REASON_SERVICE_UPDATED = "ServiceUpdated"
EVENT_REASON_CHILDREN_DELETED = "ChildrenDeleted"
