"""View data for the dashboard: display order, chart series, commits per month."""

from collections import defaultdict

from contribviz.models import ContributionSet


def rank_contributors(data: ContributionSet, contributors: list[str]) -> list[str]:
    """Contributors by total contributions, descending. Ties keep their input order."""
    def total(c):
        s = data.summary.get(c)
        return s.total if s else 0
    return sorted(contributors, key=total, reverse=True)


def commits_by_month(data: ContributionSet, contributors: list[str]) -> dict[str, dict[str, int]]:
    """Map "YYYY-MM" to per-contributor commit counts; every contributor appears in every month."""
    months: dict[str, dict[str, int]] = defaultdict(lambda: {c: 0 for c in contributors})
    for c in contributors:
        for commit in data.commits.get(c, []):
            months[commit.date.strftime("%Y-%m")][c] += 1
    return {month: months[month] for month in sorted(months)}


def build_dashboard(data: ContributionSet, contributors: list[str]) -> dict:
    order = rank_contributors(data, contributors)

    def series(kind):
        records = getattr(data, kind)
        return [len(records.get(c, [])) for c in order]

    totals = [data.summary[c].total if c in data.summary else 0 for c in order]
    return {
        "contributors": order,
        "commits": series("commits"),
        "pull_requests": series("pull_requests"),
        "issues": series("issues"),
        "reviews": series("reviews"),
        "totals": totals,
        "commits_by_month": commits_by_month(data, order),
        "total_contributions": sum(totals),
    }
