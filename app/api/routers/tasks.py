"""Tasks router -- submit an issue and get back a pushed feature branch."""

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from app.services import task_service
from smith_core.contracts import Task, TaskResult

router = APIRouter(prefix="/api", tags=["tasks"])


class AiTaskRequest(BaseModel):
    """Request body for an AI task.  camelCase keys, snake_case also accepted."""

    model_config = ConfigDict(populate_by_name=True)

    issue_key: str | None = Field(default=None, alias="issueKey")
    issue_summary: str | None = Field(default=None, alias="issueSummary")
    issue_description: str | None = Field(default=None, alias="issueDescription")
    repo: str = Field(default="", description="Clone URL of the target repository")
    user_name: str = Field(default="", alias="userName")
    user_email: str = Field(default="", alias="userEmail")

    def to_task(self) -> Task:
        return Task(
            issue_key=self.issue_key,
            summary=self.issue_summary,
            description=self.issue_description,
            repository_url=self.repo,
            author_name=self.user_name,
            author_email=self.user_email,
        )


# ── POST /api/ai-task ───────────────────────────────────────────────────


@router.post("/ai-task", response_model=TaskResult)
async def ai_task(body: AiTaskRequest) -> TaskResult:
    """Run the generate → build → retry loop and push ``feature/<issueKey>-<suffix>``.

    Blocks until the task finishes.  Fatal failures come back as structured
    errors from the global handlers (400 missing repo, 502 task failure).
    """
    return await task_service.handle_task(body.to_task())
