"""SQL-backed store for repositories, commit data, contributors and leaderboard rows."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaderboard.adapters.database import (
    CommitDataRecord,
    ContributorRecord,
    Database,
    RepositoryContributorRecord,
    RepositoryRecord,
    aware,
    utc_now,
)
from leaderboard.errors import RepositoryNotFound
from leaderboard.models.contributor import AuthorCommitCount, Contributor, LeaderboardEntry
from leaderboard.models.repository import CommitDataEntry, Repository, RepositoryState
from leaderboard.services.repository_state import assert_transition

logger = logging.getLogger(__name__)

_UPSERT_CHUNK = 500


def _chunks(items: list[Any], size: int) -> Iterable[list[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _repository(row: RepositoryRecord) -> Repository:
    return Repository(
        id=row.id,
        url=row.url,
        path_name=row.path_name,
        state=RepositoryState(row.state),
        failure_kind=row.failure_kind,
        failure_reason=row.failure_reason,
        total_commits=row.total_commits,
        unique_contributors=row.unique_contributors,
        last_attempt=aware(row.last_attempt),
        commits_processed_at=aware(row.commits_processed_at),
        users_processed_at=aware(row.users_processed_at),
        last_processed_at=aware(row.last_processed_at),
        created_at=aware(row.created_at),
        updated_at=aware(row.updated_at),
    )


def _contributor(row: ContributorRecord) -> Contributor:
    return Contributor(
        id=row.id,
        username=row.username,
        email=row.email,
        profile_url=row.profile_url,
        updated_at=aware(row.updated_at),
    )


class LeaderboardStore:
    """Every multi-row write happens inside one transaction."""

    def __init__(self, database: Database | str) -> None:
        self.db = database if isinstance(database, Database) else Database(database)

    def create_schema(self) -> None:
        self.db.create_schema()

    # --- repositories -------------------------------------------------

    def get_or_create_repository(self, url: str, path_name: str) -> tuple[Repository, bool]:
        existing = self.get_repository_by_url(url)
        if existing is not None:
            return existing, False
        now = utc_now()
        try:
            with self.db.session() as session:
                row = RepositoryRecord(
                    url=url,
                    path_name=path_name,
                    state=RepositoryState.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                return _repository(row), True
        except IntegrityError:
            # Lost the race against a concurrent submission of the same URL.
            existing = self.get_repository_by_url(url)
            if existing is None:
                raise
            return existing, False

    def get_repository(self, repository_id: int) -> Optional[Repository]:
        with self.db.session() as session:
            row = session.get(RepositoryRecord, repository_id)
            return _repository(row) if row is not None else None

    def get_repository_by_url(self, url: str) -> Optional[Repository]:
        with self.db.session() as session:
            row = session.execute(select(RepositoryRecord).where(RepositoryRecord.url == url)).scalar_one_or_none()
            return _repository(row) if row is not None else None

    def list_repositories(
        self, *, state: RepositoryState | None = None, limit: int = 100, offset: int = 0
    ) -> list[Repository]:
        with self.db.session() as session:
            stmt = select(RepositoryRecord).order_by(RepositoryRecord.id)
            if state is not None:
                stmt = stmt.where(RepositoryRecord.state == state.value)
            rows = session.execute(stmt.offset(offset).limit(limit)).scalars().all()
            return [_repository(row) for row in rows]

    def transition(
        self,
        repository_id: int,
        target: RepositoryState,
        **fields: Any,
    ) -> Repository:
        """Move a repository to ``target`` and apply ``fields`` in the same write.

        Raises InvalidStateTransition for edges the state machine does not allow.
        """
        with self.db.session() as session:
            row = self._locked_repository(session, repository_id)
            self._apply_transition(row, target, fields)
            session.flush()
            return _repository(row)

    def _locked_repository(self, session: Session, repository_id: int) -> RepositoryRecord:
        stmt = select(RepositoryRecord).where(RepositoryRecord.id == repository_id)
        if self.db.dialect == "postgresql":
            stmt = stmt.with_for_update()
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise RepositoryNotFound(f"repository {repository_id} not found")
        return row

    @staticmethod
    def _apply_transition(row: RepositoryRecord, target: RepositoryState, fields: dict[str, Any]) -> None:
        previous = row.state
        row.state = assert_transition(row.state, target).value
        if target != RepositoryState.FAILED:
            row.failure_kind = None
            row.failure_reason = None
        for key, value in fields.items():
            if not hasattr(RepositoryRecord, key):
                raise AttributeError(f"unknown repository field: {key}")
            setattr(row, key, value)
        row.updated_at = utc_now()
        logger.info("repository %s: %s -> %s", row.url, previous, row.state)

    # --- commit data --------------------------------------------------

    def record_extraction(
        self,
        repository_id: int,
        counts: list[AuthorCommitCount],
        *,
        now: datetime | None = None,
    ) -> Repository:
        """Replace the repository's commit data and advance it to users_processing.

        Existing rows keep their contributor link so the leaderboard stays
        populated while identities are re-resolved; emails that no longer
        appear in history are dropped.
        """
        now = now or utc_now()
        extraction_id = uuid.uuid4().hex
        table = CommitDataRecord.__table__
        with self.db.session() as session:
            row = self._locked_repository(session, repository_id)
            values = [
                {
                    "repository_id": repository_id,
                    "author_email": item.email,
                    "commit_count": int(item.count),
                    "processed": False,
                    "attempts": 0,
                    "extraction_id": extraction_id,
                    "created_at": now,
                    "updated_at": now,
                }
                for item in counts
            ]
            for chunk in _chunks(values, _UPSERT_CHUNK):
                stmt = self.db.insert(table).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.repository_id, table.c.author_email],
                    set_={
                        "commit_count": stmt.excluded.commit_count,
                        "processed": False,
                        "attempts": 0,
                        "extraction_id": stmt.excluded.extraction_id,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                session.execute(stmt)
            session.execute(
                delete(CommitDataRecord).where(
                    CommitDataRecord.repository_id == repository_id,
                    CommitDataRecord.extraction_id != extraction_id,
                )
            )
            self._recompute_totals(session, repository_id, None, now)
            self._apply_transition(
                row,
                RepositoryState.USERS_PROCESSING,
                {
                    "total_commits": sum(int(item.count) for item in counts),
                    "unique_contributors": len(counts),
                    "commits_processed_at": now,
                },
            )
            session.flush()
            return _repository(row)

    def load_commit_data(
        self,
        repository_id: int,
        emails: Iterable[str] | None = None,
        *,
        include_processed: bool = False,
    ) -> list[CommitDataEntry]:
        with self.db.session() as session:
            stmt = select(CommitDataRecord).where(CommitDataRecord.repository_id == repository_id)
            if emails is not None:
                stmt = stmt.where(CommitDataRecord.author_email.in_(list(emails)))
            if not include_processed:
                stmt = stmt.where(CommitDataRecord.processed.is_(False))
            rows = session.execute(stmt.order_by(CommitDataRecord.author_email)).scalars().all()
            return [CommitDataEntry.model_validate(row) for row in rows]

    def count_unprocessed(self, repository_id: int) -> int:
        with self.db.session() as session:
            return self._count_unprocessed(session, repository_id)

    @staticmethod
    def _count_unprocessed(session: Session, repository_id: int) -> int:
        return int(
            session.execute(
                select(func.count(CommitDataRecord.id)).where(
                    CommitDataRecord.repository_id == repository_id,
                    CommitDataRecord.processed.is_(False),
                )
            ).scalar_one()
        )

    def unprocessed_emails(self, repository_id: int) -> list[str]:
        with self.db.session() as session:
            rows = session.execute(
                select(CommitDataRecord.author_email)
                .where(
                    CommitDataRecord.repository_id == repository_id,
                    CommitDataRecord.processed.is_(False),
                )
                .order_by(CommitDataRecord.author_email)
            ).scalars()
            return list(rows)

    # --- contributors -------------------------------------------------

    def find_contributor(self, *, email: str | None = None, username: str | None = None) -> Optional[Contributor]:
        """Look up by username first, then by email, then by an email already linked in commit data."""
        with self.db.session() as session:
            if username:
                row = session.execute(
                    select(ContributorRecord).where(ContributorRecord.username == username)
                ).scalar_one_or_none()
                if row is not None:
                    return _contributor(row)
            if email:
                row = session.execute(
                    select(ContributorRecord).where(ContributorRecord.email == email)
                ).scalar_one_or_none()
                if row is not None:
                    return _contributor(row)
                # Secondary emails of a known contributor live only on their commit data links.
                row = session.execute(
                    select(ContributorRecord)
                    .join(CommitDataRecord, CommitDataRecord.contributor_id == ContributorRecord.id)
                    .where(CommitDataRecord.author_email == email)
                    .order_by(CommitDataRecord.updated_at.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if row is not None:
                    return _contributor(row)
        return None

    def upsert_username_contributor(
        self,
        username: str,
        profile_url: str | None,
        *,
        email: str | None = None,
        now: datetime | None = None,
    ) -> Contributor:
        """Create or refresh the canonical record for ``username``.

        An email-only record for ``email`` is promoted in place rather than
        duplicated. Retries once if a concurrent writer claimed the username.
        """
        now = now or utc_now()
        try:
            return self._upsert_username(username, profile_url, email, now)
        except IntegrityError:
            logger.info("contributor %s written concurrently, retrying", username)
            return self._upsert_username(username, profile_url, email, now)

    def _upsert_username(
        self, username: str, profile_url: str | None, email: str | None, now: datetime
    ) -> Contributor:
        with self.db.session() as session:
            row = session.execute(
                select(ContributorRecord).where(ContributorRecord.username == username)
            ).scalar_one_or_none()
            by_email = None
            if email:
                by_email = session.execute(
                    select(ContributorRecord).where(ContributorRecord.email == email)
                ).scalar_one_or_none()
            if row is None and by_email is not None and by_email.username is None:
                row = by_email
                row.username = username
            elif row is None:
                row = ContributorRecord(
                    username=username,
                    email=email if by_email is None else None,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            elif row.email is None and email and by_email is None:
                row.email = email
            if profile_url:
                row.profile_url = profile_url
            row.updated_at = now
            session.flush()
            return _contributor(row)

    def upsert_email_contributor(self, email: str, *, now: datetime | None = None) -> Contributor:
        """Create (or touch) the email-only record used when no username is known."""
        now = now or utc_now()
        table = ContributorRecord.__table__
        with self.db.session() as session:
            stmt = self.db.insert(table).values(email=email, created_at=now, updated_at=now)
            stmt = stmt.on_conflict_do_update(index_elements=[table.c.email], set_={"updated_at": now})
            session.execute(stmt)
            row = session.execute(
                select(ContributorRecord).where(ContributorRecord.email == email)
            ).scalar_one()
            return _contributor(row)

    def touch_contributor(self, contributor_id: int, *, now: datetime | None = None) -> None:
        with self.db.session() as session:
            session.execute(
                update(ContributorRecord)
                .where(ContributorRecord.id == contributor_id)
                .values(updated_at=now or utc_now())
            )

    def email_only_contributors(
        self, *, stale_before: datetime | None = None, limit: int | None = None
    ) -> list[Contributor]:
        with self.db.session() as session:
            stmt = (
                select(ContributorRecord)
                .where(ContributorRecord.username.is_(None), ContributorRecord.email.is_not(None))
                .order_by(ContributorRecord.updated_at, ContributorRecord.id)
            )
            if stale_before is not None:
                stmt = stmt.where(ContributorRecord.updated_at < stale_before)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [_contributor(row) for row in session.execute(stmt).scalars().all()]

    # --- linking ------------------------------------------------------

    def link_batch(
        self,
        repository_id: int,
        resolved: dict[str, int],
        failed: Iterable[str] = (),
        *,
        now: datetime | None = None,
    ) -> int:
        """Atomically link resolved emails, count failed attempts, and refresh leaderboard rows.

        ``resolved`` maps author email to contributor id. Returns the number of
        commit-data rows still unprocessed for the repository.
        """
        now = now or utc_now()
        failed = [email for email in failed if email not in resolved]
        with self.db.session() as session:
            affected: set[int] = set(resolved.values())
            if resolved:
                previous = session.execute(
                    select(CommitDataRecord.contributor_id).where(
                        CommitDataRecord.repository_id == repository_id,
                        CommitDataRecord.author_email.in_(list(resolved)),
                        CommitDataRecord.contributor_id.is_not(None),
                    )
                ).scalars()
                affected.update(int(cid) for cid in previous)
            for email, contributor_id in resolved.items():
                session.execute(
                    update(CommitDataRecord)
                    .where(
                        CommitDataRecord.repository_id == repository_id,
                        CommitDataRecord.author_email == email,
                    )
                    .values(contributor_id=contributor_id, processed=True, updated_at=now)
                )
            if failed:
                session.execute(
                    update(CommitDataRecord)
                    .where(
                        CommitDataRecord.repository_id == repository_id,
                        CommitDataRecord.author_email.in_(failed),
                    )
                    .values(attempts=CommitDataRecord.attempts + 1, updated_at=now)
                )
            if affected:
                self._recompute_totals(session, repository_id, affected, now)
            return self._count_unprocessed(session, repository_id)

    def _recompute_totals(
        self,
        session: Session,
        repository_id: int,
        contributor_ids: set[int] | None,
        now: datetime,
    ) -> None:
        """Rebuild repository_contributors rows as the sum of linked commit data."""
        stmt = (
            select(CommitDataRecord.contributor_id, func.sum(CommitDataRecord.commit_count))
            .where(
                CommitDataRecord.repository_id == repository_id,
                CommitDataRecord.contributor_id.is_not(None),
            )
            .group_by(CommitDataRecord.contributor_id)
        )
        if contributor_ids is not None:
            stmt = stmt.where(CommitDataRecord.contributor_id.in_(list(contributor_ids)))
        totals = {int(cid): int(total or 0) for cid, total in session.execute(stmt).all()}

        # Contributors that lost every linked email in this repository drop to zero.
        stale = update(RepositoryContributorRecord).where(
            RepositoryContributorRecord.repository_id == repository_id
        )
        if contributor_ids is not None:
            stale = stale.where(RepositoryContributorRecord.contributor_id.in_(list(contributor_ids)))
        if totals:
            stale = stale.where(RepositoryContributorRecord.contributor_id.not_in(list(totals)))
        session.execute(stale.values(commit_count=0, updated_at=now))

        if not totals:
            return
        table = RepositoryContributorRecord.__table__
        values = [
            {
                "repository_id": repository_id,
                "contributor_id": cid,
                "commit_count": total,
                "updated_at": now,
            }
            for cid, total in totals.items()
        ]
        for chunk in _chunks(values, _UPSERT_CHUNK):
            stmt = self.db.insert(table).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.repository_id, table.c.contributor_id],
                set_={"commit_count": stmt.excluded.commit_count, "updated_at": stmt.excluded.updated_at},
            )
            session.execute(stmt)

    def complete_if_resolved(self, repository_id: int, *, now: datetime | None = None) -> bool:
        """Move users_processing -> completed once no commit data is left unprocessed.

        Returns True when the repository is completed (now or already).
        """
        now = now or utc_now()
        with self.db.session() as session:
            row = self._locked_repository(session, repository_id)
            if row.state == RepositoryState.COMPLETED.value:
                return True
            if row.state != RepositoryState.USERS_PROCESSING.value:
                return False
            if self._count_unprocessed(session, repository_id) > 0:
                return False
            self._apply_transition(
                row,
                RepositoryState.COMPLETED,
                {"users_processed_at": now, "last_processed_at": now},
            )
            return True

    # --- reads --------------------------------------------------------

    def leaderboard(self, repository_id: int, *, limit: int | None = None) -> list[LeaderboardEntry]:
        with self.db.session() as session:
            stmt = (
                select(
                    ContributorRecord.username,
                    ContributorRecord.email,
                    ContributorRecord.profile_url,
                    RepositoryContributorRecord.commit_count,
                )
                .join(ContributorRecord, ContributorRecord.id == RepositoryContributorRecord.contributor_id)
                .where(
                    RepositoryContributorRecord.repository_id == repository_id,
                    RepositoryContributorRecord.commit_count > 0,
                )
                .order_by(
                    RepositoryContributorRecord.commit_count.desc(),
                    func.coalesce(ContributorRecord.username, ContributorRecord.email),
                )
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [
                LeaderboardEntry(username=username, email=email, profile_url=profile_url, commit_count=count)
                for username, email, profile_url, count in session.execute(stmt).all()
            ]
