"""Deployment and deploy-correlation schemas.

A Deployment marks the moment a product shipped new code. DeployCorrelator
compares error volume in the hour before it against the hour after it and
summarises the comparison as a Badge.
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from schemas.events import Environment


class Badge(str, Enum):
    """Display classification of a deployment's error impact.

    Values:
        NONE: No errors on either side of the deploy.
        RED: Post-deploy errors more than doubled.
        GREEN: Post-deploy errors fell below half of pre-deploy errors.
        GRAY: Anything in between.
    """

    NONE = "none"
    RED = "red"
    GREEN = "green"
    GRAY = "gray"


class Deployment(BaseModel):
    """One deployment of one product.

    Attributes:
        id: UUID4 string.
        product: Product that was deployed.
        deployed_at: UTC time the deployment went live.
        commit_hash: Git commit SHA, at most 40 characters.
        commit_message: Head commit message, at most 500 characters.
        branch: Git ref that was deployed. Defaults to "main".
        deployed_by: Who or what triggered the deploy.
        environment: Target environment.
        deploy_url: URL of the deployed build, if known.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product: str
    deployed_at: datetime
    commit_hash: str | None = Field(default=None, max_length=40)
    commit_message: str | None = Field(default=None, max_length=500)
    branch: str = Field(default="main", max_length=100)
    deployed_by: str | None = Field(default=None, max_length=100)
    environment: Environment = Environment.PRODUCTION
    deploy_url: str | None = None


class TimeBucket(BaseModel):
    """Error count for one fixed-size window, keyed by its start time."""

    bucket_start: datetime
    count: int = Field(ge=0)


class NewError(BaseModel):
    """A fingerprint first seen after a deployment, with a sample message."""

    fingerprint: str
    message: str


class DeployCorrelation(BaseModel):
    """Hour-before vs hour-after comparison for one deployment.

    pct_change is a non-negative magnitude; the badge carries the direction.
    """

    pre_count: int = Field(ge=0)
    post_count: int = Field(ge=0)
    badge: Badge
    pct_change: int = Field(ge=0)


class CorrelationResult(BaseModel):
    """Full correlation output for one deployment.

    Attributes:
        deployment_id: Id of the correlated deployment.
        product: Product that was deployed.
        deployed_at: Deploy time used as the pivot.
        buckets: Every bucket from floor(deployed_at - window) to
            floor(deployed_at + window) in ascending order, including
            empty ones.
        new_errors: Up to 3 fingerprints seen only after the deploy,
            ordered by first post-deploy appearance.
        correlation: Badge and counts.
    """

    deployment_id: str
    product: str
    deployed_at: datetime
    buckets: list[TimeBucket]
    new_errors: list[NewError]
    correlation: DeployCorrelation

    @computed_field
    @property
    def new_error_fingerprints(self) -> list[str]:
        return [e.fingerprint for e in self.new_errors]


class DeploySummary(BaseModel):
    """One row of the deploy list view: the deployment and its badge."""

    deployment: Deployment
    correlation: DeployCorrelation
