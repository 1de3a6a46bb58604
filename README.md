# permitdesk

Self-hosted permit and license tracking. Permits are stored in a local SQLite
database (`permit.db` in a data directory) and managed through a JSON API or a
browser dashboard.

## Installation

```
pip install permitdesk
```

## Running the server

```
permitdesk --port 9811 --data ./permit-data
```

Both options may be left out (the single-dash forms `-port` and `-data` work
too). The port is taken from `--port`, then the `PORT` environment variable,
then defaults to `9811`. The data directory is taken from `--data`, then
`DATA_DIR`, then defaults to `./permit-data`; it is created if missing.

Once running:

- Dashboard: `http://localhost:9811/ui` (`/` redirects there)
- API: `http://localhost:9811/api`

The server runs until interrupted with Ctrl-C.

## Licensing

Writes need a valid license key; reads always work. The key is read from the
`STOCKYARD_LICENSE_KEY` environment variable, or else from `license.txt` in the
data directory. Keys have the form `SY-<payload>.<signature>` and are checked
against a built-in Ed25519 public key; the package verifies keys but cannot
issue them.

A key can be pasted into the dashboard, which sends it to
`POST /api/license/activate`. A valid key is saved to `license.txt` (readable
by the owner only) and takes effect at once, without a restart.

Without a valid key, or once a trial has ended, every write request (anything
but `GET`, `HEAD` and `OPTIONS`) is answered with HTTP 402, except the
activation request itself.

`GET /api/tier` reports the current tier (`none`, `trial`, `paid` or
`expired`), with `trial_end` and `days_remaining` during a trial.

## API

| Method | Path | Purpose |
| ------ | ---- | ------- |
| GET | `/api/permits` | List permits, newest first; `q` searches text fields, `status` filters |
| POST | `/api/permits` | Create a permit (`permit_type` and `holder_name` required) |
| GET | `/api/permits/export.csv` | Export all permits as CSV |
| GET | `/api/permits/{id}` | Fetch one permit |
| PUT | `/api/permits/{id}` | Update a permit; empty text fields keep their old value |
| DELETE | `/api/permits/{id}` | Delete a permit and its extra fields |
| GET | `/api/stats` | Permit count |
| GET | `/api/health`, `/health` | Health check |
| GET | `/api/tier` | License tier |
| POST | `/api/license/activate` | Store a license key (`{"license_key": "..."}`) |
| GET | `/api/config` | Dashboard personalisation from `config.json` |
| GET | `/api/extras/{resource}` | All extra fields for a resource, keyed by record id |
| GET/PUT | `/api/extras/{resource}/{id}` | Extra fields for one record (a JSON object) |

A permit has the fields `id`, `permit_type`, `holder_name`, `holder_email`,
`permit_number`, `issued_date`, `expiry_date`, `issuing_authority`, `status`,
`cost`, `notes` and `created_at`. `id` and `created_at` are set by the server.

## Personalisation

An optional `config.json` in the data directory, read at start-up, can set
`dashboard_title`, `custom_fields`, `empty_state_message` and
`placeholder_name` for the dashboard. Custom fields are stored through the
extras endpoints.

## Using it as a library

```python
from permitdesk.store import Database, Permit
from permitdesk.licensing import paid_limits
from permitdesk.server import Server

with Database("./permit-data") as db:
    db.create_permit(Permit(permit_type="Building", holder_name="Alice"))
    app = Server(db, paid_limits(), "./permit-data")
    response = app.handle("GET", "/api/permits", b"")
    print(response.json())
```

- `permitdesk.store` — `Database` and the `Permit` dataclass.
- `permitdesk.licensing` — `validate_license_key`, `default_limits`,
  `persist_license`, `tier_info` and the `Limits` tiers.
- `permitdesk.server` — `Server`, whose `handle()` answers a request directly
  and which is also a WSGI application; `serve()` hosts it on a port.
- `permitdesk.dashboard` — `render_dashboard()` returns the dashboard page.

## What it does not do

The built-in server is a plain threaded WSGI server: it has no TLS and no user
accounts or authentication. Put it behind a reverse proxy if it must be
reachable from other machines.

## Running the tests

```
pip install "permitdesk[test]"
pytest
```