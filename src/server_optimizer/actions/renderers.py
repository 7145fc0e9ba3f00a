"""Config renderers - ParameterSet to file content.

Renderers are pure: the same ParameterSet (and the same existing
content) always produces the same bytes. Nothing here embeds a date.
"""

import json
from typing import Any

from server_optimizer.model.server import ParameterSet

EA4_KEYS = (
    "maxclients", "maxkeepaliverequests", "maxrequestsperchild", "keepalive", "serverlimit",
    "timeout", "rlimit_cpu_soft", "rlimit_cpu_hard", "rlimit_mem_soft", "rlimit_mem_hard",
)


def _header(params: ParameterSet, comment: str = "#") -> str:
    label = params.server_class or "this host"
    return f"{comment} Performance tuning for {label}\n{comment} Managed by server-optimizer\n"


def render_ea4(params: ParameterSet, existing: str | None) -> str:
    """Update the Apache keys of ``ea4.conf`` and keep everything else."""
    document: dict[str, Any] = {}
    if existing and existing.strip():
        try:
            document = json.loads(existing)
        except json.JSONDecodeError as e:
            raise ValueError(f"ea4.conf is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ValueError("ea4.conf does not contain a JSON object")
    for key in EA4_KEYS:
        document[key] = params[key]
    return json.dumps(document, indent=4, sort_keys=True) + "\n"


def render_sysctl(params: ParameterSet, existing: str | None) -> str:
    lines = [_header(params)]
    for key, value in params.values.items():
        lines.append(f"{key} = {value}\n")
    return "".join(lines)


def render_limits(params: ParameterSet, existing: str | None) -> str:
    rows = [
        ("*", "soft", "nproc", params["nproc_soft"]),
        ("*", "hard", "nproc", params["nproc_hard"]),
        ("*", "soft", "nofile", params["nofile_soft"]),
        ("*", "hard", "nofile", params["nofile_hard"]),
        ("root", "soft", "nproc", params["root_nproc_soft"]),
        ("root", "hard", "nproc", params["root_nproc_hard"]),
        ("root", "soft", "nofile", params["nofile_soft"]),
        ("root", "hard", "nofile", params["nofile_hard"]),
        ("*", "soft", "memlock", "unlimited"),
        ("*", "hard", "memlock", "unlimited"),
    ]
    body = "".join(f"{domain:<8}{kind:<8}{item:<8}{value}\n" for domain, kind, item, value in rows)
    return _header(params) + "\n" + body


REDIS_STATIC = (
    ("dir", "/var/lib/redis"),
    ("dbfilename", "dump.rdb"),
    ("maxmemory-policy", "allkeys-lru"),
    ("maxmemory-samples", "10"),
    ("appendonly", "no"),
    ("appendfsync", "everysec"),
    ("no-appendfsync-on-rewrite", "yes"),
    ("activerehashing", "yes"),
    ("rdbcompression", "yes"),
    ("rdbchecksum", "yes"),
    ("timeout", "300"),
    ("tcp-keepalive", "60"),
    ("maxclients", "10000"),
    ("loglevel", "notice"),
)


def render_redis(params: ParameterSet, existing: str | None) -> str:
    lines = [_header(params), "\n", f"maxmemory {params['maxmemory']}\n"]
    lines.extend(f"{key} {value}\n" for key, value in REDIS_STATIC)
    lines.append(f"databases {params.get('databases', 16)}\n")
    return "".join(lines)


def render_lsapi(params: ParameterSet, existing: str | None) -> str:
    p = params
    return f"""{_header(params)}
<IfModule lsapi_module>
    lsapi_engine On
    AddType application/x-httpd-lsphp .php

    lsapi_backend_children {p['children']}
    lsapi_backend_max_idle {p['max_idle']}
    lsapi_backend_max_reqs {p['max_reqs']}
    lsapi_backend_max_process_time {p['max_process_time']}

    lsapi_backend_connect_tries {p['connect_tries']}
    lsapi_backend_initial_start {p['initial_start']}
    lsapi_backend_pgrp_max_reqs {p['max_reqs']}
    lsapi_backend_pgrp_max_crashes {p['pgrp_max_crashes']}
    lsapi_terminate_backends_on_exit On
    lsapi_avoid_zombies On
    lsapi_backend_accept_notify On

    lsapi_use_suexec On
    lsapi_per_user On

    lsapi_disable_reject_mode Off
    lsapi_check_document_root On
    lsapi_target_perm Off
    lsapi_paranoid Off

    lsapi_backend_coredump On
    lsapi_backend_use_own_log Off
    lsapi_backend_common_own_log Off
    lsapi_backend_loglevel_info Off

    lsapi_process_phpini On
    lsapi_enable_user_ini On
    lsapi_keep_http200 On
    lsapi_mod_php_behaviour On

    lsapi_set_env TEMP "/tmp"
    lsapi_set_env TMP "/tmp"
    lsapi_set_env TMPDIR "/tmp"
    lsapi_set_env_path /usr/local/bin:/usr/bin:/bin
</IfModule>
"""


LSAPI_MONITOR_SCRIPT = """#!/bin/bash
# Raises an alert line in the LSAPI event log when backends crash or
# respawn too often within a sliding window.

LSAPI_LOG="/var/log/mod_lsapi/lsapi_events.log"
CRASH_THRESHOLD=5
RESPAWN_THRESHOLD=10
WINDOW=300

crashes=()
respawns=()

prune() {
    local cutoff=$(( $(date +%s) - WINDOW ))
    local kept=()
    for t in "${crashes[@]}"; do [ "$t" -ge "$cutoff" ] && kept+=("$t"); done
    crashes=("${kept[@]}")
    kept=()
    for t in "${respawns[@]}"; do [ "$t" -ge "$cutoff" ] && kept+=("$t"); done
    respawns=("${kept[@]}")
}

tail -F "$LSAPI_LOG" | while read -r line; do
    case "$line" in
        *crashed*)
            crashes+=("$(date +%s)")
            prune
            if [ "${#crashes[@]}" -ge "$CRASH_THRESHOLD" ]; then
                echo "[$(date '+%Y-%m-%d %H:%M:%S')] ALERT: ${#crashes[@]} LSAPI crashes in the last 5 minutes" >> "$LSAPI_LOG"
            fi
            ;;
        *respawned*)
            respawns+=("$(date +%s)")
            prune
            if [ "${#respawns[@]}" -ge "$RESPAWN_THRESHOLD" ]; then
                echo "[$(date '+%Y-%m-%d %H:%M:%S')] ALERT: ${#respawns[@]} LSAPI respawns in the last 5 minutes" >> "$LSAPI_LOG"
            fi
            ;;
    esac
done
"""


def render_lsapi_monitor_unit(script_path: str) -> str:
    return f"""[Unit]
Description=LSAPI Monitoring Service
After=httpd.service

[Service]
ExecStart={script_path}
Restart=always
User=root

[Install]
WantedBy=multi-user.target
"""


def render_mysql(params: ParameterSet, existing: str | None) -> str:
    """my.cnf from a table row, for classes without a template file."""
    p = params
    return f"""# Server Type: {params.server_class}
[mysqld]
performance_schema = off
sql_mode = ""
max_connections = {p['max_connections']}
max_allowed_packet = {p['max_allowed_packet_mb']}M
wait_timeout = {p['wait_timeout']}
interactive_timeout = {p['interactive_timeout']}
table_open_cache = {p['table_open_cache']}
thread_cache_size = {p['thread_cache_size']}
key_buffer_size = {p['key_buffer_mb']}M
tmp_table_size = {p['tmp_table_mb']}M
max_heap_table_size = {p['max_heap_table_mb']}M

innodb_buffer_pool_size = {p['innodb_buffer_pool_mb']}M
innodb_buffer_pool_instances = {p['innodb_buffer_pool_instances']}
innodb_log_file_size = {p['innodb_log_file_mb']}M
innodb_file_per_table = 1
innodb_flush_log_at_trx_commit = 2
innodb_flush_method = O_DIRECT

log-error = /var/lib/mysql/mysqld.log
"""
