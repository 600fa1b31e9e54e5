from .auth_service import AuthService, Operator
from .branch_lifecycle import BranchLifecycleManager
from .credentials import CredentialBroker, GitCredentials, OperatorCredentialPrompt, SettingsCredentialStore
from .deployment_coordinator import DeploymentCoordinator
from .git_publisher import CommandExecutionError, GitChangePublisher
from .job_directory import AmplifyJobDirectory, JobDirectoryError
from .job_discovery import JobDiscoveryEngine
from .job_polling import JobPoller, JobSubscription, PollingSlots
from .session_service import SessionNotFoundError, SessionService

__all__ = [
    "AmplifyJobDirectory",
    "AuthService",
    "BranchLifecycleManager",
    "CommandExecutionError",
    "CredentialBroker",
    "DeploymentCoordinator",
    "GitChangePublisher",
    "GitCredentials",
    "JobDirectoryError",
    "JobDiscoveryEngine",
    "JobPoller",
    "JobSubscription",
    "Operator",
    "OperatorCredentialPrompt",
    "PollingSlots",
    "SessionNotFoundError",
    "SessionService",
    "SettingsCredentialStore",
]
