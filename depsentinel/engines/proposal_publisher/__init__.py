from depsentinel.engines.proposal_publisher.github_host import GitHubHost
from depsentinel.engines.proposal_publisher.publisher import (
    ONBOARDING_FILENAME,
    ProposalPublisher,
    PublishResult,
    render_body,
)
from depsentinel.engines.proposal_publisher.vcs import (
    BranchWrite,
    GitAuthor,
    Proposal,
    ProposalState,
    VcsHost,
)

__all__ = [
    "ONBOARDING_FILENAME",
    "BranchWrite",
    "GitAuthor",
    "GitHubHost",
    "Proposal",
    "ProposalPublisher",
    "ProposalState",
    "PublishResult",
    "VcsHost",
    "render_body",
]
