"""
Tests for the template renderer.
"""

import os

import pytest
import yaml

from laraharbor.environment.renderer import TemplateRenderer
from laraharbor.models import Credentials, DatabaseEngine, EnvironmentSpec, SourceMode


def make_spec(engine=DatabaseEngine.MYSQL, cache_enabled=True, **kwargs) -> EnvironmentSpec:
    return EnvironmentSpec(
        name=kwargs.pop("name", "demo-site"),
        engine=engine,
        cache_enabled=cache_enabled,
        source_mode=kwargs.pop("source_mode", SourceMode.FRESH),
        credentials=Credentials(
            db_password="dbpass123",
            db_root_password="rootpass456",
            cache_password="redispass789" if cache_enabled else None,
        ),
        **kwargs,
    )


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


class TestSiteRendering:
    """Test rendering of a site's artifact set."""

    def test_artifact_paths(self, renderer):
        artifacts = renderer.render_site(make_spec())

        assert artifacts.paths() == sorted(
            [
                ".env",
                "README.md",
                "artisan",
                "composer",
                "docker-compose.yml",
                "docker/Dockerfile",
                "docker/nginx.conf",
                "docker/start.sh",
                "docker/supervisord.conf",
                "npm",
                "php-config/custom.ini",
                "src/.env",
            ]
        )

    def test_rendering_is_deterministic(self, renderer):
        spec = make_spec()
        first = {path: artifact for path, artifact in renderer.render_site(spec)}
        second = {path: artifact for path, artifact in TemplateRenderer().render_site(spec)}

        assert first == second

    def test_executables(self, renderer):
        artifacts = renderer.render_site(make_spec())

        for path in ["artisan", "composer", "npm", "docker/start.sh"]:
            assert artifacts[path].executable, path
        assert not artifacts["docker-compose.yml"].executable

    def test_helper_scripts(self, renderer):
        artifacts = renderer.render_site(make_spec())

        assert 'docker exec -it demo-site-app php artisan "$@"' in artifacts["artisan"].content
        assert 'docker exec -it demo-site-app composer "$@"' in artifacts["composer"].content
        assert 'docker exec -it demo-site-app npm "$@"' in artifacts["npm"].content

    def test_helper_scripts_follow_container_runtime(self):
        artifacts = TemplateRenderer(container_runtime="podman").render_site(make_spec())

        for helper in ["artisan", "composer", "npm"]:
            assert artifacts[helper].content.splitlines()[1].startswith("podman exec -it demo-site-app ")
        assert "podman compose logs -f" in artifacts["README.md"].content

    def test_mysql_with_cache(self, renderer):
        spec = make_spec()
        manifest = yaml.safe_load(renderer.render_site(spec)["docker-compose.yml"].content)
        services = manifest["services"]

        assert list(services) == ["demo-site-app", "demo-site-db", "demo-site-redis", "demo-site-dbadmin"]
        assert services["demo-site-db"]["image"] == "mysql:8.0"
        assert "./database:/var/lib/mysql" in services["demo-site-db"]["volumes"]
        assert "MYSQL_ROOT_PASSWORD=rootpass456" in services["demo-site-db"]["environment"]
        assert services["demo-site-app"]["depends_on"] == ["demo-site-db", "demo-site-redis"]
        assert "VIRTUAL_HOST=demo-site.local" in services["demo-site-app"]["environment"]
        assert services["demo-site-redis"]["command"] == "redis-server --requirepass redispass789"
        assert services["demo-site-dbadmin"]["image"] == "phpmyadmin/phpmyadmin"
        assert "VIRTUAL_HOST=admin.demo-site.local" in services["demo-site-dbadmin"]["environment"]
        assert "VIRTUAL_PORT=80" in services["demo-site-dbadmin"]["environment"]
        assert manifest["volumes"] == {"redis-data": {}}

    def test_postgres_without_cache(self, renderer):
        spec = make_spec(engine=DatabaseEngine.POSTGRES, cache_enabled=False)
        manifest = yaml.safe_load(renderer.render_site(spec)["docker-compose.yml"].content)
        services = manifest["services"]

        assert "demo-site-redis" not in services
        assert "volumes" not in manifest
        assert services["demo-site-db"]["image"] == "postgres:14"
        assert "./database:/var/lib/postgresql/data" in services["demo-site-db"]["volumes"]
        assert "POSTGRES_PASSWORD=dbpass123" in services["demo-site-db"]["environment"]
        assert services["demo-site-app"]["depends_on"] == ["demo-site-db"]
        assert services["demo-site-dbadmin"]["image"] == "adminer"
        assert "ADMINER_DEFAULT_SERVER=demo-site-db" in services["demo-site-dbadmin"]["environment"]
        assert "VIRTUAL_PORT=8080" in services["demo-site-dbadmin"]["environment"]

    def test_networks(self, renderer):
        manifest = yaml.safe_load(renderer.render_site(make_spec())["docker-compose.yml"].content)

        assert manifest["networks"]["laraharbor-network"] == {
            "external": True,
            "name": "laraharbor-network",
        }
        assert manifest["networks"]["internal"] == {"driver": "bridge"}
        assert manifest["services"]["demo-site-db"]["networks"] == ["internal"]

    def test_app_env_mysql_cache(self, renderer):
        content = renderer.render_site(make_spec())["src/.env"].content

        assert "DB_CONNECTION=mysql" in content
        assert "DB_HOST=demo-site-db" in content
        assert "DB_PORT=3306" in content
        assert "DB_PASSWORD=dbpass123" in content
        assert "CACHE_DRIVER=redis" in content
        assert "REDIS_HOST=demo-site-redis" in content
        assert "REDIS_PASSWORD=redispass789" in content
        assert "MAIL_HOST=laraharbor-mailhog" in content
        assert "APP_URL=https://demo-site.local" in content

    def test_app_env_postgres_no_cache(self, renderer):
        spec = make_spec(engine=DatabaseEngine.POSTGRES, cache_enabled=False)
        content = renderer.render_site(spec)["src/.env"].content

        assert "DB_CONNECTION=pgsql" in content
        assert "DB_PORT=5432" in content
        assert "CACHE_DRIVER=file" in content
        assert "QUEUE_CONNECTION=sync" in content
        assert "REDIS_" not in content

    def test_app_key_carried(self, renderer):
        spec = make_spec(app_key="base64:abc123")
        assert "APP_KEY=base64:abc123" in renderer.render_site(spec)["src/.env"].content

    def test_site_state_file(self, renderer):
        content = renderer.render_site(make_spec(source_mode=SourceMode.IMPORT))[".env"].content

        assert "SITE_NAME=demo-site" in content
        assert "DB_TYPE=mysql" in content
        assert "CACHE_ENABLED=true" in content
        assert "SOURCE_MODE=import" in content
        assert "DB_ROOT_PASSWORD=rootpass456" in content
        assert "REDIS_PASSWORD=redispass789" in content

    def test_dockerfile_extensions(self, renderer):
        mysql = renderer.render_site(make_spec())["docker/Dockerfile"].content
        pgsql = renderer.render_site(make_spec(engine=DatabaseEngine.POSTGRES))["docker/Dockerfile"].content

        assert "pdo_mysql" in mysql
        assert "pdo_pgsql" in pgsql

    def test_custom_network_name(self):
        renderer = TemplateRenderer(network_name="other-net")
        manifest = yaml.safe_load(renderer.render_site(make_spec())["docker-compose.yml"].content)

        assert "other-net" in manifest["networks"]
        assert "other-net" in manifest["services"]["demo-site-app"]["networks"]


class TestSharedRendering:
    """Test rendering of the shared services."""

    def test_proxy(self, renderer):
        artifacts = renderer.render_proxy()
        manifest = yaml.safe_load(artifacts["docker-compose.yml"].content)
        proxy = manifest["services"]["nginx-proxy"]

        assert proxy["container_name"] == "laraharbor-proxy"
        assert proxy["ports"] == ["80:80", "443:443"]
        assert "./certs:/etc/nginx/certs" in proxy["volumes"]
        assert "conf.d/default.conf" in artifacts
        assert "conf.d/uploads.conf" in artifacts

    def test_mail(self, renderer):
        manifest = yaml.safe_load(renderer.render_mail()["docker-compose.yml"].content)
        mail = manifest["services"]["mailhog"]

        assert mail["container_name"] == "laraharbor-mailhog"
        assert "VIRTUAL_HOST=mail.local" in mail["environment"]
        assert "VIRTUAL_PORT=8025" in mail["environment"]

    def test_scheduler(self, renderer):
        artifacts = renderer.render_scheduler(
            root_dir="/home/dev/LaraHarbor",
            backups_dir="/home/dev/LaraHarbor/backups",
            scheduler_dir="scheduler",
            reserved=["proxy", "mailhog", "scheduler", "backups"],
            retention_days=7,
        )
        config_ini = artifacts["config.ini"].content
        script = artifacts["backup-all-sites.sh"]

        assert "schedule = @daily" in config_ini
        assert "volume = /home/dev/LaraHarbor:/sites:ro" in config_ini
        assert "command = sh /sites/scheduler/backup-all-sites.sh" in config_ini
        assert script.executable
        assert "{{.Names}}" in script.content
        assert "-mtime +7" in script.content
        assert "mysqldump" in script.content
        assert "pg_dump" in script.content

    def test_templates_ship_with_package(self, renderer):
        templates = renderer.jinja_env.list_templates()

        assert "site/app.env.j2" in templates
        assert "infrastructure/backup-all-sites.sh.j2" in templates
        assert all(os.path.splitext(name)[1] == ".j2" for name in templates)
