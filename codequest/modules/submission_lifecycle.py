"""
Submission Lifecycle Module.

Sole writer of submission state. Intake persists a PENDING record and
hands its id to the grading queue; the worker calls evaluate(), which
claims the record, grades it and credits rewards on a pass. Reviews
are a separate one-shot overlay.

Status transitions are conditional UPDATEs so two triggers racing on
the same submission cannot both proceed.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.config import Settings
from common.db import session_scope
from common.models import (
    Challenge,
    Submission,
    SubmissionStatus,
    TransactionType,
    User,
)
from modules import challenges_service, code_guard, users_service
from modules.errors import (
    AlreadyEvaluatedError,
    AlreadyReviewedError,
    ChallengeInactiveError,
    CodeValidationError,
    InvalidReviewError,
    NotYetEvaluatedError,
    ProgressionConflictError,
    RateLimitExceededError,
    SubmissionAccessDeniedError,
    SubmissionNotFoundError,
)
from modules.evaluation_client import GradingResult
from modules.progression import RewardPolicy, get_reward_policy

logger = logging.getLogger(__name__)

GENERIC_ERROR_FEEDBACK = (
    "An error occurred during evaluation. Please try again."
)

MAX_EXPLANATION_SCORE = 100
MAX_REVIEW_BONUS_XP = 500
MAX_REVIEW_BONUS_COINS = 100
MAX_REVIEW_FEEDBACK_LENGTH = 1000

REFERENCE_TYPE = "submission"


class Evaluator(Protocol):
    def evaluate(
        self,
        code: str,
        problem_statement: str,
        evaluation_instructions: str,
        test_cases: list[dict[str, Any]]
    ) -> GradingResult:
        ...


class GradingQueue(Protocol):
    def enqueue(self, submission_id: str) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_submission_id() -> str:
    """Generate unique submission ID."""
    return f"sub-{uuid.uuid4().hex[:12]}"


class SubmissionLifecycle:
    """
    Intake, grading and review of submissions.

    Args:
        settings: Application settings
        session_factory: SQLAlchemy session factory
        evaluator: Grades code; never raises for backend failures
        queue: Receives submission ids to grade asynchronously
        reward_policy: Overrides ``settings.reward_policy``
        clock: Source of the current UTC time
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        evaluator: Evaluator,
        queue: Optional[GradingQueue] = None,
        reward_policy: Optional[RewardPolicy] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.settings = settings
        self._session_factory = session_factory
        self._evaluator = evaluator
        self._queue = queue
        self._reward_policy = reward_policy or get_reward_policy(
            settings.reward_policy
        )
        self._clock = clock

    # Intake

    def submit(
        self,
        user_id: str,
        challenge_id: str,
        code: str,
        explanation: Optional[str] = None,
        explanation_language: Optional[str] = None
    ) -> Submission:
        """
        Validate and persist a new submission, then queue it for grading.

        Args:
            user_id: Submitting user
            challenge_id: Target challenge
            code: Submitted source code
            explanation: Written explanation of the approach
            explanation_language: Natural language of the explanation

        Returns:
            Submission: The persisted PENDING submission

        Raises:
            UserNotFoundError: If the user does not exist
            ChallengeNotFoundError: If the challenge does not exist
            ChallengeInactiveError: If the challenge is closed
            CodeValidationError: If the code or explanation is rejected
            RateLimitExceededError: If the admission window is full
        """
        with session_scope(self._session_factory) as db:
            users_service.get_user(db, user_id)
            challenge = challenges_service.get_challenge(db, challenge_id)
            if not challenge.is_active:
                raise ChallengeInactiveError(
                    f"Challenge {challenge_id} is not accepting submissions"
                )

            report = code_guard.validate(code)
            if not report.ok:
                logger.info(
                    f"Rejected submission from {user_id}: "
                    f"{report.violations}"
                )
                raise CodeValidationError(report.violations)
            self._check_explanation(explanation)

            # serialize concurrent intake for this user
            db.execute(
                select(User.id).where(User.id == user_id).with_for_update()
            )
            now = self._clock()
            self._enforce_rate_limit(db, user_id, challenge_id, now)

            submission = Submission(
                id=generate_submission_id(),
                user_id=user_id,
                challenge_id=challenge_id,
                code=code,
                explanation=explanation,
                explanation_language=explanation_language,
                status=SubmissionStatus.PENDING,
                submitted_at=now,
                updated_at=now
            )
            db.add(submission)
            db.flush()

        logger.info(
            f"Created submission {submission.id} for "
            f"{challenge_id} by {user_id}"
        )

        if self.settings.auto_grade_on_submit and self._queue is not None:
            try:
                self._queue.enqueue(submission.id)
            except Exception as e:
                # the record stays PENDING and can be graded manually
                logger.error(
                    f"Failed to enqueue grading for {submission.id}: {e}",
                    exc_info=True
                )

        return submission

    def _check_explanation(self, explanation: Optional[str]) -> None:
        if not self.settings.require_explanation:
            return
        length = len(explanation.strip()) if explanation else 0
        minimum = self.settings.explanation_min_length
        maximum = self.settings.explanation_max_length
        if length < minimum:
            raise CodeValidationError(
                [f"Explanation must be at least {minimum} characters"]
            )
        if length > maximum:
            raise CodeValidationError(
                [f"Explanation must be at most {maximum} characters"]
            )

    def _enforce_rate_limit(
        self,
        db: Session,
        user_id: str,
        challenge_id: str,
        now: datetime
    ) -> None:
        window_start = now - timedelta(
            minutes=self.settings.submission_window_minutes
        )
        recent = db.scalar(
            select(func.count(Submission.id)).where(
                Submission.user_id == user_id,
                Submission.challenge_id == challenge_id,
                Submission.submitted_at > window_start
            )
        )
        limit = self.settings.max_submissions_per_window
        if recent >= limit:
            raise RateLimitExceededError(
                f"At most {limit} submissions per "
                f"{self.settings.submission_window_minutes} minutes "
                f"are allowed for this challenge"
            )

    # Grading

    def evaluate(self, submission_id: str) -> Submission:
        """
        Grade a PENDING submission and credit rewards on a pass.

        Backend and unexpected failures end in ERRORED rather than
        propagating.

        Returns:
            Submission: The submission in its terminal state

        Raises:
            SubmissionNotFoundError: If the submission does not exist
            AlreadyEvaluatedError: If it is not PENDING. An EVALUATING
                claim older than the grading time limit is moved to
                ERRORED before this is raised.
        """
        self._claim(submission_id)
        logger.info(f"Evaluating submission {submission_id}")

        try:
            with session_scope(self._session_factory) as db:
                submission = self._get(db, submission_id)
                challenge = challenges_service.get_challenge(
                    db,
                    submission.challenge_id
                )
                code = submission.code

            report = code_guard.validate(code)
            if not report.ok:
                result = GradingResult.rejected(report.violations)
            else:
                result = self._evaluator.evaluate(
                    code_guard.sanitize(code),
                    challenge.problem_statement,
                    challenge.evaluation_prompt,
                    challenge.test_cases or []
                )

            if result.degraded:
                return self._finish(
                    submission_id,
                    SubmissionStatus.ERRORED,
                    result
                )
            if result.passed:
                return self._finalize_passed(submission_id, challenge, result)
            return self._finish(submission_id, SubmissionStatus.FAILED, result)

        except Exception as e:
            logger.error(
                f"Evaluation of {submission_id} failed: {e}",
                exc_info=True
            )
            return self._mark_errored(submission_id)

    def _claim(self, submission_id: str) -> None:
        with session_scope(self._session_factory) as db:
            result = db.execute(
                update(Submission)
                .where(
                    Submission.id == submission_id,
                    Submission.status == SubmissionStatus.PENDING
                )
                .values(
                    status=SubmissionStatus.EVALUATING,
                    updated_at=self._clock()
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            status = db.scalar(
                select(Submission.status).where(
                    Submission.id == submission_id
                )
            )
            # committed with the scope, before the error below is raised
            expired = (
                status == SubmissionStatus.EVALUATING
                and self._expire_stale(db, submission_id) == 1
            )

        if status is None:
            raise SubmissionNotFoundError(
                f"Submission {submission_id} not found"
            )
        if expired:
            logger.warning(
                f"Submission {submission_id} was abandoned while "
                f"EVALUATING; marked ERRORED"
            )
            status = SubmissionStatus.ERRORED
        raise AlreadyEvaluatedError(
            f"Submission {submission_id} is already {status.value}"
        )

    def _expire_stale(
        self,
        db: Session,
        submission_id: Optional[str] = None
    ) -> int:
        # a claim older than the job's hard time limit has no live owner
        now = self._clock()
        cutoff = now - timedelta(
            seconds=self.settings.grading_time_limit_seconds
        )
        stmt = update(Submission).where(
            Submission.status == SubmissionStatus.EVALUATING,
            Submission.updated_at < cutoff
        )
        if submission_id is not None:
            stmt = stmt.where(Submission.id == submission_id)
        result = db.execute(
            stmt.values(
                status=SubmissionStatus.ERRORED,
                ai_feedback=GENERIC_ERROR_FEEDBACK,
                evaluated_at=now,
                updated_at=now
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_stale_evaluations(self) -> int:
        """
        Mark every abandoned EVALUATING submission as ERRORED.

        A submission is abandoned once its claim is older than
        ``settings.grading_time_limit_seconds``, e.g. after the worker
        holding it was killed.

        Returns:
            int: Number of submissions moved to ERRORED
        """
        with session_scope(self._session_factory) as db:
            expired = self._expire_stale(db)

        if expired:
            logger.warning(f"Expired {expired} abandoned evaluation(s)")
        return expired

    def _apply_result(
        self,
        submission: Submission,
        status: SubmissionStatus,
        result: GradingResult
    ) -> None:
        now = self._clock()
        submission.status = status
        submission.correctness = result.analysis.correctness
        submission.code_quality = result.analysis.code_quality
        submission.efficiency = result.analysis.efficiency
        submission.style = result.analysis.style
        submission.ai_score = result.score
        submission.ai_feedback = result.feedback
        submission.ai_suggestions = list(result.suggestions)
        submission.test_results = [
            test_result.model_dump() for test_result in result.test_results
        ]
        submission.evaluated_at = now
        submission.updated_at = now

    def _finish(
        self,
        submission_id: str,
        status: SubmissionStatus,
        result: GradingResult
    ) -> Submission:
        with session_scope(self._session_factory) as db:
            submission = self._get(db, submission_id)
            self._apply_result(submission, status, result)

        logger.info(
            f"Submission {submission_id} {status.value} "
            f"(score={result.score})"
        )
        return submission

    def _finalize_passed(
        self,
        submission_id: str,
        challenge: Challenge,
        result: GradingResult
    ) -> Submission:
        rewards = self._reward_policy(challenge, result.score)
        attempts = self.settings.credit_max_attempts

        attempt = 1
        while True:
            try:
                with session_scope(self._session_factory) as db:
                    submission = self._get(db, submission_id)
                    users_service.award_xp(
                        db,
                        submission.user_id,
                        rewards.xp,
                        reference_id=submission_id,
                        reference_type=REFERENCE_TYPE
                    )
                    users_service.add_coins(
                        db,
                        submission.user_id,
                        rewards.coins,
                        TransactionType.CHALLENGE_REWARD,
                        f"Completed challenge: {challenge.title}",
                        reference_id=submission_id,
                        reference_type=REFERENCE_TYPE
                    )
                    self._apply_result(
                        submission,
                        SubmissionStatus.PASSED,
                        result
                    )
                    submission.xp_earned = rewards.xp
                    submission.coins_earned = rewards.coins

                logger.info(
                    f"Submission {submission_id} PASSED "
                    f"(score={result.score}, xp={rewards.xp}, "
                    f"coins={rewards.coins})"
                )
                return submission

            except (SQLAlchemyError, ProgressionConflictError) as e:
                logger.warning(
                    f"Crediting {submission_id} failed "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                if attempt >= attempts:
                    raise
                attempt += 1

    def _mark_errored(self, submission_id: str) -> Submission:
        with session_scope(self._session_factory) as db:
            submission = self._get(db, submission_id)
            now = self._clock()
            submission.status = SubmissionStatus.ERRORED
            submission.ai_feedback = GENERIC_ERROR_FEEDBACK
            submission.evaluated_at = now
            submission.updated_at = now
        return submission

    # Review

    def review(
        self,
        submission_id: str,
        explanation_score: int,
        bonus_xp: int = 0,
        bonus_coins: int = 0,
        feedback: Optional[str] = None,
        reviewer_id: Optional[str] = None
    ) -> Submission:
        """
        Apply the one-shot reviewer overlay to a graded submission.

        Bonus XP and coins are credited on top of any grading rewards;
        the grading status is left unchanged.

        Args:
            submission_id: Submission to review
            explanation_score: Score for the written explanation (0-100)
            bonus_xp: Extra XP (0-500)
            bonus_coins: Extra coins (0-100)
            feedback: Reviewer comment (at most 1000 characters)
            reviewer_id: Reviewing user

        Returns:
            Submission: The reviewed submission

        Raises:
            InvalidReviewError: If a value is out of range
            SubmissionNotFoundError: If the submission does not exist
            NotYetEvaluatedError: If grading has not finished
            AlreadyReviewedError: If it was reviewed before
        """
        self._check_review(explanation_score, bonus_xp, bonus_coins, feedback)

        with session_scope(self._session_factory) as db:
            submission = self._get(db, submission_id)
            if not submission.status.is_terminal:
                raise NotYetEvaluatedError(
                    f"Submission {submission_id} is still "
                    f"{submission.status.value}"
                )
            if reviewer_id is not None:
                users_service.get_user(db, reviewer_id)

            now = self._clock()
            result = db.execute(
                update(Submission)
                .where(
                    Submission.id == submission_id,
                    Submission.is_reviewed.is_(False)
                )
                .values(
                    is_reviewed=True,
                    reviewed_by=reviewer_id,
                    reviewed_at=now,
                    reviewer_feedback=feedback,
                    explanation_score=explanation_score,
                    bonus_xp_from_review=bonus_xp,
                    bonus_coins_from_review=bonus_coins,
                    updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AlreadyReviewedError(
                    f"Submission {submission_id} has already been reviewed"
                )

            if bonus_xp > 0:
                users_service.award_xp(
                    db,
                    submission.user_id,
                    bonus_xp,
                    reference_id=submission_id,
                    reference_type=REFERENCE_TYPE
                )
            if bonus_coins > 0:
                users_service.add_coins(
                    db,
                    submission.user_id,
                    bonus_coins,
                    TransactionType.REVIEW_BONUS,
                    "Review bonus",
                    reference_id=submission_id,
                    reference_type=REFERENCE_TYPE
                )

            db.refresh(submission)

        logger.info(
            f"Submission {submission_id} reviewed: "
            f"score={explanation_score} +{bonus_xp}xp +{bonus_coins}c"
        )
        return submission

    @staticmethod
    def _check_review(
        explanation_score: int,
        bonus_xp: int,
        bonus_coins: int,
        feedback: Optional[str]
    ) -> None:
        if not 0 <= explanation_score <= MAX_EXPLANATION_SCORE:
            raise InvalidReviewError(
                f"Explanation score must be between 0 and "
                f"{MAX_EXPLANATION_SCORE}"
            )
        if not 0 <= bonus_xp <= MAX_REVIEW_BONUS_XP:
            raise InvalidReviewError(
                f"Bonus XP must be between 0 and {MAX_REVIEW_BONUS_XP}"
            )
        if not 0 <= bonus_coins <= MAX_REVIEW_BONUS_COINS:
            raise InvalidReviewError(
                f"Bonus coins must be between 0 and {MAX_REVIEW_BONUS_COINS}"
            )
        if feedback is not None and len(feedback) > MAX_REVIEW_FEEDBACK_LENGTH:
            raise InvalidReviewError(
                f"Feedback must be at most {MAX_REVIEW_FEEDBACK_LENGTH} "
                f"characters"
            )

    # Queries

    @staticmethod
    def _get(db: Session, submission_id: str) -> Submission:
        submission = db.get(Submission, submission_id, populate_existing=True)
        if submission is None:
            raise SubmissionNotFoundError(
                f"Submission {submission_id} not found"
            )
        return submission

    def get_submission(
        self,
        submission_id: str,
        user_id: Optional[str] = None
    ) -> Submission:
        """
        Retrieve a submission, optionally checking ownership.

        Raises:
            SubmissionNotFoundError: If the submission does not exist
            SubmissionAccessDeniedError: If ``user_id`` is not the owner
        """
        with session_scope(self._session_factory) as db:
            submission = self._get(db, submission_id)

        if user_id is not None and submission.user_id != user_id:
            raise SubmissionAccessDeniedError(
                "You do not have access to this submission"
            )
        return submission

    def submission_stats(self, user_id: str) -> dict[str, int]:
        """Per-status counts and reward totals for one user."""
        with session_scope(self._session_factory) as db:
            users_service.get_user(db, user_id)
            submissions = list(
                db.scalars(
                    select(Submission).where(Submission.user_id == user_id)
                )
            )

        def count(*statuses: SubmissionStatus) -> int:
            return sum(1 for s in submissions if s.status in statuses)

        scored = [s.ai_score for s in submissions if s.ai_score is not None]

        return {
            "total": len(submissions),
            "passed": count(SubmissionStatus.PASSED),
            "failed": count(SubmissionStatus.FAILED),
            "errored": count(SubmissionStatus.ERRORED),
            "pending": count(
                SubmissionStatus.PENDING,
                SubmissionStatus.EVALUATING
            ),
            "reviewed": sum(1 for s in submissions if s.is_reviewed),
            "total_xp_earned": sum(
                (s.xp_earned or 0) + (s.bonus_xp_from_review or 0)
                for s in submissions
            ),
            "total_coins_earned": sum(
                (s.coins_earned or 0) + (s.bonus_coins_from_review or 0)
                for s in submissions
            ),
            "average_score": (
                round(sum(scored) / len(scored)) if scored else 0
            ),
        }

    def submission_history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20
    ) -> tuple[list[dict[str, Any]], int]:
        """
        One page of a user's submissions, newest first.

        Args:
            user_id: Owner of the submissions
            page: 1-based page number
            limit: Page size

        Returns:
            tuple: Summaries (with challenge title and difficulty) and
                the user's total submission count

        Raises:
            UserNotFoundError: If the user does not exist
        """
        with session_scope(self._session_factory) as db:
            users_service.get_user(db, user_id)
            total = db.scalar(
                select(func.count(Submission.id))
                .where(Submission.user_id == user_id)
            )
            rows = db.execute(
                select(Submission, Challenge.title, Challenge.difficulty)
                .join(Challenge, Submission.challenge_id == Challenge.id)
                .where(Submission.user_id == user_id)
                .order_by(Submission.submitted_at.desc(), Submission.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()

            items = [
                {
                    "id": submission.id,
                    "challenge_id": submission.challenge_id,
                    "challenge_title": title,
                    "challenge_difficulty": difficulty,
                    "status": submission.status.value,
                    "ai_score": submission.ai_score,
                    "xp_earned": submission.xp_earned,
                    "coins_earned": submission.coins_earned,
                    "is_reviewed": submission.is_reviewed,
                    "submitted_at": submission.submitted_at,
                    "evaluated_at": submission.evaluated_at,
                }
                for submission, title, difficulty in rows
            ]
        return items, total or 0
