import pytest

from gorge.slugs import check_module_slug, check_release_slug


@pytest.mark.parametrize(
    "slug",
    ["myOrg/module", "company-mymodule", "puppetlabs-stdlib", "a1-b_2"],
)
def test_valid_module_slugs(slug):
    assert check_module_slug(slug) is True


@pytest.mark.parametrize(
    "slug",
    [
        "",
        "company",
        "company-MyModule",
        "company-1module",
        "-module",
        "company_module",
        "company-mymodule-1.2.3",
        "company-mymodule\n",
    ],
)
def test_invalid_module_slugs(slug):
    assert check_module_slug(slug) is False


@pytest.mark.parametrize(
    "slug",
    [
        "myOrg/module/1.2.3",
        "company-mymodule/2.0.0-beta.1",
        "puppetlabs-stdlib-9.4.1",
        "company-mymodule-1.0.0+build5",
    ],
)
def test_valid_release_slugs(slug):
    assert check_release_slug(slug) is True


@pytest.mark.parametrize(
    "slug",
    [
        "",
        "company-mymodule",
        "company-mymodule-1.2",
        "company-mymodule-1.2.x",
        "company-Mymodule-1.2.3",
        "company-mymodule-1.2.3-",
        "company-mymodule-1.2.3\n",
    ],
)
def test_invalid_release_slugs(slug):
    assert check_release_slug(slug) is False


def test_release_slug_is_not_a_module_slug():
    slug = "company-mymodule-1.2.3"
    assert check_release_slug(slug) is True
    assert check_module_slug(slug) is False