"""Concrete collaborators for the gantry protocols.

This package contains:
- git_changes: git change detection and source checkout
- provisioner: command-template runner provisioner
- make_invoker: make target invocation (local or via an exec prefix)
- slack_notifier: Slack incoming-webhook notifier
- github_permissions: GitHub collaborator permission lookup
"""

from gantry.infra.clients.git_changes import (
    CheckoutError,
    GitChangedFilesDetector,
    GitSourceCheckout,
)
from gantry.infra.clients.github_permissions import GitHubPermissionChecker
from gantry.infra.clients.make_invoker import MakeTargetInvoker
from gantry.infra.clients.provisioner import CommandProvisioner
from gantry.infra.clients.slack_notifier import SlackWebhookNotifier

__all__ = [
    "CheckoutError",
    "CommandProvisioner",
    "GitChangedFilesDetector",
    "GitHubPermissionChecker",
    "GitSourceCheckout",
    "MakeTargetInvoker",
    "SlackWebhookNotifier",
]
