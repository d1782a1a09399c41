import pytest

from fixit import voting
from fixit.database import models
from fixit.errors import ValidationError


def make_issue(upvotes=0, downvotes=0):
    issue = models.Issue(id="issue-1", priority="medium")
    for n in range(upvotes):
        issue.votes.append(models.IssueVote(user_id=f"up-{n}", vote_type="upvote"))
    for n in range(downvotes):
        issue.votes.append(models.IssueVote(user_id=f"down-{n}", vote_type="downvote"))
    return issue


@pytest.mark.parametrize(
    "balance, priority",
    [(-3, "low"), (-1, "low"), (0, "medium"), (4, "medium"), (5, "high"), (9, "high"), (10, "urgent")],
)
def test_derive_priority(balance, priority):
    assert voting.derive_priority(balance) == priority


def test_first_vote_is_recorded():
    issue = make_issue()

    outcome = voting.cast_vote(issue, "alice", "upvote")

    assert issue.upvote_count == 1
    assert issue.vote_of("alice") == "upvote"
    assert outcome.previous is None
    assert outcome.new_upvote


def test_repeating_a_vote_removes_it():
    issue = make_issue()
    voting.cast_vote(issue, "alice", "upvote")

    outcome = voting.cast_vote(issue, "alice", "upvote")

    assert issue.votes == []
    assert outcome.current is None
    assert not outcome.new_upvote


def test_switching_replaces_the_vote():
    issue = make_issue()
    voting.cast_vote(issue, "alice", "downvote")

    outcome = voting.cast_vote(issue, "alice", "upvote")

    assert issue.upvote_count == 1
    assert issue.downvote_count == 0
    assert outcome.previous == "downvote"
    assert outcome.new_upvote


def test_balance_drives_priority():
    issue = make_issue(upvotes=4)

    outcome = voting.cast_vote(issue, "alice", "upvote")

    assert issue.priority == "high"
    assert outcome.priority_changed


def test_net_negative_balance_lowers_priority():
    issue = make_issue(downvotes=1)

    voting.cast_vote(issue, "alice", "downvote")

    assert issue.vote_count == -2
    assert issue.priority == "low"


def test_invalid_vote_type():
    issue = make_issue()

    with pytest.raises(ValidationError):
        voting.cast_vote(issue, "alice", "sideways")
    assert issue.votes == []
