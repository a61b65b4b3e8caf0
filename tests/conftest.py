"""
Shared fixtures for the Answer Visibility test suite.

Every test that touches storage gets its own SQLite file under tmp_path.
"""

from dataclasses import dataclass

import pytest

from answer_visibility.storage.models import Brand, Competitor, Organization, Project
from answer_visibility.storage.repository import Repository


@dataclass
class SeededProject:
    org: Organization
    project: Project
    brand: Brand
    competitors: list[Competitor]


@pytest.fixture
def repo(tmp_path):
    """Repository over a freshly migrated database."""
    repository = Repository.open(str(tmp_path / "visibility.db"))
    yield repository
    repository.close()


@pytest.fixture
def seeded(repo):
    """One starter-tier org with a project, primary brand and two competitors."""
    org = repo.create_organization("Acme Inc", subscription_tier="starter")
    project = repo.create_project(org.id, "Acme Visibility")
    brand = repo.create_brand(project.id, "Acme Corp", "acme.com", ["Acme"])
    competitors = [
        repo.create_competitor(project.id, "Globex", "globex.io", ["Globex Corp"]),
        repo.create_competitor(project.id, "Initech", None, []),
    ]
    return SeededProject(org=org, project=project, brand=brand, competitors=competitors)
