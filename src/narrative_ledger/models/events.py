"""External lifecycle event payloads (GitHub webhook shapes)."""

from pydantic import BaseModel, Field


class GitUser(BaseModel):
    login: str


class Label(BaseModel):
    name: str


class PullRequestHead(BaseModel):
    sha: str


class PullRequestBase(BaseModel):
    ref: str = "main"


class PullRequest(BaseModel):
    number: int
    title: str
    html_url: str
    merged_at: str | None = None
    user: GitUser
    head: PullRequestHead
    base: PullRequestBase = Field(default_factory=PullRequestBase)
    body: str | None = None
    labels: list[Label] = Field(default_factory=list)


class PullRequestEvent(BaseModel):
    """A pull request webhook. Only merged pull requests become entries."""

    action: str
    pull_request: PullRequest


class Issue(BaseModel):
    number: int
    title: str
    html_url: str
    user: GitUser
    body: str | None = None
    labels: list[Label] = Field(default_factory=list)
    closed_at: str | None = None


class IssueEvent(BaseModel):
    """An issue webhook. Only the ``closed`` action becomes an entry."""

    action: str
    issue: Issue


class Release(BaseModel):
    tag_name: str
    name: str | None = None
    html_url: str
    body: str | None = None
    author: GitUser
    published_at: str | None = None


class ReleaseEvent(BaseModel):
    """A release webhook. Only the ``published`` action becomes an entry."""

    action: str
    release: Release
