"""
Template renderer for site and shared-service artifacts.

Rendering is a pure function of its inputs: the compose manifests are
built as plain Python structures and serialized with PyYAML, and every
text artifact comes from a Jinja2 template shipped with the package.
Nothing here touches the filesystem or the container runtime.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Tuple

import yaml
from jinja2 import Environment, PackageLoader, StrictUndefined

from ..models import DatabaseEngine, EnvironmentSpec

logger = logging.getLogger(__name__)

DB_NAME = "laravel"
DB_USER = "laravel"
HELPER_COMMANDS = {
    "artisan": "php artisan",
    "composer": "composer",
    "npm": "npm",
}
PHP_EXTENSIONS = {
    DatabaseEngine.MYSQL: ["pdo", "pdo_mysql", "mbstring", "exif", "pcntl", "bcmath", "gd", "zip"],
    DatabaseEngine.POSTGRES: ["pdo", "pdo_pgsql", "mbstring", "exif", "pcntl", "bcmath", "gd", "zip"],
}


@dataclass(frozen=True)
class Artifact:
    """One rendered file."""

    content: str
    executable: bool = False


@dataclass
class ArtifactSet:
    """Rendered files keyed by path relative to their target directory."""

    artifacts: Dict[str, Artifact] = field(default_factory=dict)

    def add(self, path: str, content: str, executable: bool = False) -> None:
        self.artifacts[path] = Artifact(content=content, executable=executable)

    def __getitem__(self, path: str) -> Artifact:
        return self.artifacts[path]

    def __contains__(self, path: str) -> bool:
        return path in self.artifacts

    def __iter__(self) -> Iterator[Tuple[str, Artifact]]:
        return iter(sorted(self.artifacts.items()))

    def __len__(self) -> int:
        return len(self.artifacts)

    def paths(self) -> List[str]:
        return sorted(self.artifacts)


def dump_yaml(data: dict) -> str:
    """Serialize a manifest with stable key order."""
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


class TemplateRenderer:
    """Renders the artifact sets of sites and of the shared services."""

    def __init__(
        self,
        network_name: str = "laraharbor-network",
        mail_host: str = "mail.local",
        container_prefix: str = "laraharbor",
        container_runtime: str = "docker",
    ):
        self.network_name = network_name
        self.container_runtime = container_runtime
        self.mail_host = mail_host
        self.container_prefix = container_prefix
        self.jinja_env = Environment(
            loader=PackageLoader("laraharbor", "templates"),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False,
        )

    @property
    def mail_container(self) -> str:
        return f"{self.container_prefix}-mailhog"

    def _render(self, template: str, **context) -> str:
        return self.jinja_env.get_template(template).render(**context)

    def _site_context(self, spec: EnvironmentSpec) -> dict:
        db = spec.database
        is_mysql = spec.engine == DatabaseEngine.MYSQL
        return {
            "name": spec.name,
            "domain": spec.domain,
            "admin_domain": spec.admin_domain,
            "mail_host": self.mail_host,
            "mail_container": self.mail_container,
            "container_runtime": self.container_runtime,
            "cache_enabled": spec.cache_enabled,
            "source_mode": spec.source_mode.value,
            "app_key": spec.app_key,
            "app_container": spec.container_name("app"),
            "db_host": spec.container_name("db"),
            "redis_host": spec.container_name("redis"),
            "db_connection": spec.engine.value,
            "db_port": db.port,
            "db_database": DB_NAME,
            "db_username": DB_USER,
            "db_password": spec.credentials.db_password,
            "db_root_password": spec.credentials.db_root_password,
            "cache_password": spec.credentials.cache_password or "",
            "db_display_name": db.display_name,
            "admin_label": db.admin_label,
            "admin_user": db.root_user,
            "admin_password": (
                spec.credentials.db_root_password if is_mysql else spec.credentials.db_password
            ),
            "php_extensions": PHP_EXTENSIONS[spec.engine],
        }

    def _database_environment(self, spec: EnvironmentSpec) -> List[str]:
        creds = spec.credentials
        if spec.engine == DatabaseEngine.POSTGRES:
            return [
                f"POSTGRES_USER={DB_USER}",
                f"POSTGRES_PASSWORD={creds.db_password}",
                f"POSTGRES_DB={DB_NAME}",
            ]
        return [
            f"MYSQL_ROOT_PASSWORD={creds.db_root_password}",
            f"MYSQL_DATABASE={DB_NAME}",
            f"MYSQL_USER={DB_USER}",
            f"MYSQL_PASSWORD={creds.db_password}",
        ]

    def _admin_service(self, spec: EnvironmentSpec) -> dict:
        db = spec.database
        db_host = spec.container_name("db")
        if spec.engine == DatabaseEngine.POSTGRES:
            environment = [f"ADMINER_DEFAULT_SERVER={db_host}"]
        else:
            environment = [
                f"PMA_HOST={db_host}",
                f"PMA_USER={db.root_user}",
                f"PMA_PASSWORD={spec.credentials.db_root_password}",
            ]
        environment += [
            f"VIRTUAL_HOST={spec.admin_domain}",
            f"VIRTUAL_PORT={db.admin_port}",
            "VIRTUAL_PROTO=http",
            "HTTPS_METHOD=redirect",
        ]
        if spec.engine == DatabaseEngine.MYSQL:
            environment.append("UPLOAD_LIMIT=128M")
        return {
            "image": db.admin_image,
            "container_name": spec.container_name("dbadmin"),
            "depends_on": [db_host],
            "environment": environment,
            "networks": ["internal", self.network_name],
            "restart": "unless-stopped",
        }

    def compose_manifest(self, spec: EnvironmentSpec) -> dict:
        """Build the site's compose manifest as a plain dict."""
        app = spec.container_name("app")
        db = spec.container_name("db")
        redis = spec.container_name("redis")

        depends_on = [db]
        if spec.cache_enabled:
            depends_on.append(redis)

        services = {
            app: {
                "image": app,
                "container_name": app,
                "build": {"context": "./docker"},
                "volumes": [
                    "./src:/var/www/html",
                    "./php-config/custom.ini:/usr/local/etc/php/conf.d/custom.ini",
                    "./logs:/var/log/supervisor",
                ],
                "depends_on": depends_on,
                "environment": [
                    f"VIRTUAL_HOST={spec.domain}",
                    "VIRTUAL_PORT=80",
                    "VIRTUAL_PROTO=http",
                    "HTTPS_METHOD=redirect",
                ],
                "networks": [self.network_name, "internal"],
                "restart": "unless-stopped",
            },
            db: {
                "image": spec.database.image,
                "container_name": db,
                "volumes": [f"./database:{spec.database.volume_path}"],
                "environment": self._database_environment(spec),
                "networks": ["internal"],
                "restart": "unless-stopped",
            },
        }

        if spec.cache_enabled:
            services[redis] = {
                "image": "redis:alpine",
                "container_name": redis,
                "command": f"redis-server --requirepass {spec.credentials.cache_password}",
                "volumes": ["redis-data:/data"],
                "networks": ["internal"],
                "restart": "unless-stopped",
            }

        services[spec.container_name("dbadmin")] = self._admin_service(spec)

        manifest = {
            "services": services,
            "networks": {
                self.network_name: {"external": True, "name": self.network_name},
                "internal": {"driver": "bridge"},
            },
        }
        if spec.cache_enabled:
            manifest["volumes"] = {"redis-data": {}}
        return manifest

    def render_site(self, spec: EnvironmentSpec, backup_dir: str = "") -> ArtifactSet:
        """
        Render every file of a site.

        Args:
            spec: Site specification including its persisted credentials
            backup_dir: Where the site's dumps are kept (shown in the README)

        Returns:
            ArtifactSet keyed by path relative to the site directory
        """
        context = self._site_context(spec)
        context["backup_dir"] = backup_dir or f"backups/{spec.name}/"

        artifacts = ArtifactSet()
        artifacts.add("docker-compose.yml", dump_yaml(self.compose_manifest(spec)))
        artifacts.add("docker/Dockerfile", self._render("site/Dockerfile.j2", **context))
        artifacts.add("docker/nginx.conf", self._render("site/nginx.conf.j2", **context))
        artifacts.add("docker/supervisord.conf", self._render("site/supervisord.conf.j2", **context))
        artifacts.add("docker/start.sh", self._render("site/start.sh.j2", **context), executable=True)
        artifacts.add("php-config/custom.ini", self._render("site/custom.ini.j2", **context))
        artifacts.add("src/.env", self._render("site/app.env.j2", **context))
        artifacts.add(".env", self._render("site/site.env.j2", **context))
        artifacts.add("README.md", self._render("site/README.md.j2", **context))
        for helper, command in HELPER_COMMANDS.items():
            artifacts.add(
                helper,
                self._render("site/helper.sh.j2", command=command, **context),
                executable=True,
            )

        logger.debug(f"Rendered {len(artifacts)} artifacts for {spec.name}")
        return artifacts

    def _external_network(self, alias: str) -> dict:
        return {alias: {"external": True, "name": self.network_name}}

    def render_proxy(self) -> ArtifactSet:
        name = f"{self.container_prefix}-proxy"
        manifest = {
            "services": {
                "nginx-proxy": {
                    "image": "jwilder/nginx-proxy:alpine",
                    "container_name": name,
                    "ports": ["80:80", "443:443"],
                    "volumes": [
                        "/var/run/docker.sock:/tmp/docker.sock:ro",
                        "./certs:/etc/nginx/certs",
                        "./vhost.d:/etc/nginx/vhost.d",
                        "./html:/usr/share/nginx/html",
                        "./conf.d:/etc/nginx/conf.d",
                    ],
                    "restart": "unless-stopped",
                    "networks": ["proxy-network"],
                }
            },
            "networks": self._external_network("proxy-network"),
        }
        artifacts = ArtifactSet()
        artifacts.add("docker-compose.yml", dump_yaml(manifest))
        artifacts.add("conf.d/default.conf", self._render("infrastructure/default.conf.j2"))
        artifacts.add("conf.d/uploads.conf", self._render("infrastructure/uploads.conf.j2"))
        return artifacts

    def render_mail(self) -> ArtifactSet:
        manifest = {
            "services": {
                "mailhog": {
                    "image": "mailhog/mailhog",
                    "container_name": self.mail_container,
                    "environment": [
                        f"VIRTUAL_HOST={self.mail_host}",
                        "VIRTUAL_PORT=8025",
                        "VIRTUAL_PROTO=http",
                        "HTTPS_METHOD=redirect",
                    ],
                    "restart": "unless-stopped",
                    "networks": ["mailhog-network"],
                }
            },
            "networks": self._external_network("mailhog-network"),
        }
        artifacts = ArtifactSet()
        artifacts.add("docker-compose.yml", dump_yaml(manifest))
        return artifacts

    def render_scheduler(
        self,
        root_dir: str,
        backups_dir: str,
        scheduler_dir: str,
        reserved: List[str],
        retention_days: int = 7,
        schedule: str = "@daily",
    ) -> ArtifactSet:
        manifest = {
            "services": {
                "backup-scheduler": {
                    "image": "mcuadros/ofelia:latest",
                    "container_name": f"{self.container_prefix}-backup-scheduler",
                    "command": "daemon --config=/etc/ofelia/config.ini",
                    "volumes": [
                        "/var/run/docker.sock:/var/run/docker.sock:ro",
                        "./config.ini:/etc/ofelia/config.ini:ro",
                    ],
                    "restart": "unless-stopped",
                    "networks": ["backup-network"],
                }
            },
            "networks": self._external_network("backup-network"),
        }
        artifacts = ArtifactSet()
        artifacts.add("docker-compose.yml", dump_yaml(manifest))
        artifacts.add(
            "config.ini",
            self._render(
                "infrastructure/config.ini.j2",
                schedule=schedule,
                root_dir=root_dir,
                backups_dir=backups_dir,
                scheduler_dir=scheduler_dir,
            ),
        )
        artifacts.add(
            "backup-all-sites.sh",
            self._render(
                "infrastructure/backup-all-sites.sh.j2",
                reserved=sorted(reserved),
                retention_days=retention_days,
            ),
            executable=True,
        )
        return artifacts
