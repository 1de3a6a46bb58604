"""The single-page HTML dashboard served at ``/ui``."""

from __future__ import annotations

import html
import json
from dataclasses import asdict, dataclass, field
from functools import lru_cache

STATUSES = ("Active", "Pending", "Expired", "Revoked", "Suspended")


@dataclass(frozen=True)
class _Field:
    name: str
    label: str
    kind: str
    required: bool = False
    options: tuple[str, ...] = field(default_factory=tuple)


FIELDS = (
    _Field("permit_type", "Permit Type", "text", required=True),
    _Field("holder_name", "Holder Name", "text", required=True),
    _Field("holder_email", "Email", "email"),
    _Field("permit_number", "Permit #", "text"),
    _Field("issued_date", "Issued", "date"),
    _Field("expiry_date", "Expires", "date"),
    _Field("issuing_authority", "Issuing Authority", "text"),
    _Field("status", "Status", "select", options=STATUSES),
    _Field("cost", "Cost ($)", "number"),
    _Field("notes", "Notes", "textarea"),
)

_STYLE = """
:root{--bg:#1a1410;--bg2:#241e18;--bg3:#2e261e;--rust:#e8753a;--leather:#a0845c;--cream:#f0e6d3;--dim:#bfb5a3;--muted:#7a7060;--red:#c94444;--mono:ui-monospace,Menlo,Consolas,monospace;--serif:Georgia,serif}
*{margin:0;padding:0;box-sizing:border-box}
body{background:var(--bg);color:var(--cream);font-family:var(--serif);line-height:1.6}
.hdr{padding:1rem 1.5rem;border-bottom:1px solid var(--bg3);display:flex;justify-content:space-between;align-items:center}
.hdr h1{font-family:var(--mono);font-size:.9rem;letter-spacing:2px}.hdr h1 span{color:var(--rust)}
.main{padding:1.5rem;max-width:1100px;margin:0 auto}
.stats{display:grid;grid-template-columns:repeat(3,1fr);gap:.5rem;margin-bottom:1rem}
.st{background:var(--bg2);border:1px solid var(--bg3);padding:.6rem;text-align:center;font-family:var(--mono)}
.st-v{font-size:1.3rem;font-weight:700}.st-l{font-size:.5rem;color:var(--muted);text-transform:uppercase;letter-spacing:1px}
.toolbar{display:flex;gap:.5rem;margin-bottom:1rem;flex-wrap:wrap}
.search{flex:1;min-width:180px;padding:.4rem .6rem;background:var(--bg2);border:1px solid var(--bg3);color:var(--cream);font-family:var(--mono);font-size:.7rem}
.filter-sel{padding:.4rem .5rem;background:var(--bg2);border:1px solid var(--bg3);color:var(--cream);font-family:var(--mono);font-size:.65rem}
.tbl-wrap{overflow-x:auto}.tbl{width:100%;border-collapse:collapse;font-family:var(--mono);font-size:.65rem}
.tbl th{text-align:left;padding:.5rem .4rem;border-bottom:2px solid var(--bg3);color:var(--muted);font-size:.55rem;text-transform:uppercase;white-space:nowrap}
.tbl td{padding:.45rem .4rem;border-bottom:1px solid var(--bg3);max-width:200px;overflow:hidden;text-overflow:ellipsis;white-space:nowrap}
.tbl tr:hover td{background:var(--bg2);cursor:pointer}
.btn{font-family:var(--mono);font-size:.6rem;padding:.25rem .5rem;cursor:pointer;border:1px solid var(--bg3);background:var(--bg);color:var(--dim)}
.btn-p{background:var(--rust);border-color:var(--rust);color:#fff}.btn-d{color:var(--red)}
.btn-locked{opacity:.45;cursor:not-allowed}
.modal-bg{display:none;position:fixed;inset:0;background:rgba(0,0,0,.65);z-index:100;align-items:center;justify-content:center}.modal-bg.open{display:flex}
.modal{background:var(--bg2);border:1px solid var(--bg3);padding:1.5rem;width:520px;max-width:92vw;max-height:90vh;overflow-y:auto}
.modal h2{font-family:var(--mono);font-size:.8rem;margin-bottom:1rem;color:var(--rust)}
.fr{margin-bottom:.6rem}.fr label{display:block;font-family:var(--mono);font-size:.55rem;color:var(--muted);text-transform:uppercase;margin-bottom:.2rem}
.fr input,.fr select,.fr textarea{width:100%;padding:.4rem .5rem;background:var(--bg);border:1px solid var(--bg3);color:var(--cream);font-family:var(--mono);font-size:.7rem}
.acts{display:flex;gap:.4rem;justify-content:flex-end;margin-top:1rem}
.empty{text-align:center;padding:3rem;color:var(--muted);font-style:italic}
.count-label{font-family:var(--mono);font-size:.6rem;color:var(--muted);margin-bottom:.5rem}
.trial-bar{display:none;background:#2e1c14;border-bottom:2px solid var(--rust);padding:.7rem 1.5rem;font-family:var(--mono);font-size:.68rem;align-items:center;gap:1rem;flex-wrap:wrap}
.trial-bar.show{display:flex}
.trial-bar-msg{flex:1;min-width:240px}
.trial-bar-msg strong{color:var(--rust);text-transform:uppercase;display:block;font-size:.6rem}
.trial-bar-actions{display:flex;gap:.5rem;align-items:center;flex-wrap:wrap}
.trial-bar a.btn-trial{background:var(--rust);color:#fff;padding:.4rem .8rem;text-decoration:none;font-size:.65rem;text-transform:uppercase}
.key-input{padding:.4rem .5rem;background:var(--bg);border:1px solid var(--bg3);color:var(--cream);font-family:var(--mono);font-size:.6rem;width:200px}
.trial-msg{font-size:.6rem;color:var(--muted)}.trial-msg.error{color:#e74c3c}.trial-msg.success{color:#4ade80}
@media(max-width:600px){.toolbar{flex-direction:column}.search{min-width:100%}}
"""

_SCRIPT = """
const API = "/api";
const RESOURCE = "permits";
const FIELDS = __FIELDS__;
let records = [];
let editId = null;
let trialRequired = false;
let emptyMessage = "No records found.";
let placeholderName = "";

function esc(value) {
  const div = document.createElement("div");
  div.textContent = value === undefined || value === null ? "" : String(value);
  return div.innerHTML;
}

async function loadAll() {
  const listing = await fetch(`${API}/${RESOURCE}`).then(r => r.json());
  records = listing[RESOURCE] || [];
  try {
    const extras = await fetch(`${API}/extras/${RESOURCE}`).then(r => r.json());
    for (const item of records) {
      const extra = extras[item.id];
      if (!extra) continue;
      for (const [key, value] of Object.entries(extra)) {
        if (item[key] === undefined) item[key] = value;
      }
    }
  } catch (e) {}
  render();
}

function renderStats() {
  const now = Date.now();
  const since = days => records.filter(r => new Date(r.created_at) >= new Date(now - days * 86400000)).length;
  const cards = [["Total", records.length], ["This Week", since(7)], ["This Month", since(30)]];
  document.getElementById("stats").innerHTML = cards
    .map(([label, value]) => `<div class="st"><div class="st-v">${value}</div><div class="st-l">${label}</div></div>`)
    .join("");
}

function visibleRecords() {
  const query = (document.getElementById("search").value || "").toLowerCase();
  const status = document.getElementById("filter-status").value;
  return records.filter(item => {
    if (query && !FIELDS.some(f => item[f.name] && String(item[f.name]).toLowerCase().includes(query))) return false;
    if (status && item.status !== status) return false;
    return true;
  });
}

function render() {
  renderStats();
  const items = visibleRecords();
  document.getElementById("count").textContent = items.length + " record" + (items.length !== 1 ? "s" : "");
  const tbody = document.getElementById("tbody");
  if (!items.length) {
    tbody.innerHTML = `<tr><td colspan="${FIELDS.length + 1}" class="empty">${esc(emptyMessage)}</td></tr>`;
    return;
  }
  tbody.innerHTML = "";
  for (const item of items) {
    const row = document.createElement("tr");
    row.onclick = () => trialRequired ? showTrialNudge() : openEdit(item.id);
    for (const f of FIELDS) {
      const cell = document.createElement("td");
      let value = item[f.name];
      if (value === undefined || value === null) value = "";
      if (f.kind === "checkbox") value = value ? "Yes" : "No";
      cell.textContent = String(value);
      row.appendChild(cell);
    }
    const actions = document.createElement("td");
    if (!trialRequired) {
      const button = document.createElement("button");
      button.className = "btn btn-d";
      button.innerHTML = "&#10005;";
      button.onclick = event => { event.stopPropagation(); removeRecord(item.id); };
      actions.appendChild(button);
    }
    row.appendChild(actions);
    tbody.appendChild(row);
  }
}

const INPUT_TYPES = {number: "number", integer: "number", email: "email", url: "url", phone: "tel", date: "date", datetime: "datetime-local"};

function formHTML(item) {
  const editing = !!item;
  const values = item || {};
  let out = `<h2>${editing ? "EDIT" : "NEW"} PERMITS</h2>`;
  FIELDS.forEach((f, index) => {
    let value = values[f.name];
    if (value === undefined || value === null) value = "";
    const label = esc(f.label) + (f.required ? " *" : "");
    if (f.kind === "select") {
      const options = f.options.map(o => `<option value="${esc(o)}"${value === o ? " selected" : ""}>${esc(o)}</option>`).join("");
      out += `<div class="fr"><label>${label}</label><select id="f-${f.name}"><option value="">Select...</option>${options}</select></div>`;
    } else if (f.kind === "textarea") {
      out += `<div class="fr"><label>${label}</label><textarea id="f-${f.name}" rows="3">${esc(value)}</textarea></div>`;
    } else if (f.kind === "checkbox") {
      out += `<div class="fr"><label><input type="checkbox" id="f-${f.name}"${value ? " checked" : ""} style="width:auto;margin-right:.5rem">${esc(f.label)}</label></div>`;
    } else {
      const type = INPUT_TYPES[f.kind] || "text";
      const hint = index === 0 && placeholderName && !value ? ` placeholder="${esc(placeholderName)}"` : "";
      out += `<div class="fr"><label>${label}</label><input type="${type}" id="f-${f.name}" value="${esc(value)}"${hint}></div>`;
    }
  });
  out += `<div class="acts"><button class="btn" onclick="closeModal()">Cancel</button><button class="btn btn-p" onclick="submitForm()">${editing ? "Save" : "Create"}</button></div>`;
  return out;
}

function openModal(item) {
  document.getElementById("mdl").innerHTML = formHTML(item);
  document.getElementById("mbg").classList.add("open");
}

function openNew() {
  if (trialRequired) { showTrialNudge(); return; }
  editId = null;
  openModal(null);
}

function openEdit(id) {
  const item = records.find(r => r.id === id);
  if (!item) return;
  editId = id;
  openModal(item);
}

function closeModal() {
  document.getElementById("mbg").classList.remove("open");
  editId = null;
}

async function submitForm() {
  const body = {};
  const extras = {};
  for (const f of FIELDS) {
    const el = document.getElementById("f-" + f.name);
    if (!el) continue;
    let value;
    if (f.kind === "checkbox") value = el.checked;
    else if (f.kind === "number") value = parseFloat(el.value) || 0;
    else if (f.kind === "integer") value = parseInt(el.value, 10) || 0;
    else value = el.value.trim();
    if (f.extra) extras[f.name] = value; else body[f.name] = value;
  }
  const missing = FIELDS.find(f => f.required && !f.extra && !body[f.name]);
  if (missing) { alert(missing.label + " is required"); return; }
  const headers = {"Content-Type": "application/json"};
  let savedId = editId;
  if (editId) {
    await fetch(`${API}/${RESOURCE}/${editId}`, {method: "PUT", headers, body: JSON.stringify(body)});
  } else {
    const resp = await fetch(`${API}/${RESOURCE}`, {method: "POST", headers, body: JSON.stringify(body)});
    const result = await resp.json();
    if (!resp.ok) { alert(result.error || "Error"); return; }
    savedId = result.id;
  }
  if (Object.keys(extras).length && savedId) {
    await fetch(`${API}/extras/${RESOURCE}/${savedId}`, {method: "PUT", headers, body: JSON.stringify(extras)});
  }
  closeModal();
  loadAll();
}

async function removeRecord(id) {
  if (!confirm("Delete this record?")) return;
  await fetch(`${API}/${RESOURCE}/${id}`, {method: "DELETE"});
  loadAll();
}

function applyConfig(cfg) {
  if (!cfg || !cfg.dashboard_title) return;
  document.querySelector(".hdr h1").innerHTML = "<span>&#9670;</span> " + esc(cfg.dashboard_title);
  document.title = cfg.dashboard_title;
  const headRow = document.getElementById("head-row");
  for (const custom of cfg.custom_fields || []) {
    FIELDS.push({name: custom.name, label: custom.label, kind: custom.type || "text", required: false, options: custom.options || [], extra: true});
    const th = document.createElement("th");
    th.textContent = custom.label;
    headRow.insertBefore(th, headRow.lastElementChild);
  }
  if (cfg.empty_state_message) emptyMessage = cfg.empty_state_message;
  if (cfg.placeholder_name) placeholderName = cfg.placeholder_name;
}

async function checkTrialState() {
  try {
    const resp = await fetch(`${API}/tier`);
    if (!resp.ok) return;
    const info = await resp.json();
    trialRequired = info.tier === "none" || info.tier === "expired" || info.expired === true;
    const bar = document.getElementById("trial-bar");
    if (info.upgrade_url) document.getElementById("trial-link").href = info.upgrade_url;
    if (!trialRequired) { bar.classList.remove("show"); return; }
    bar.classList.add("show");
    document.getElementById("trial-bar-text").textContent = info.tier === "expired"
      ? "Your trial or license has expired. Reads work, but writes are locked until you renew."
      : "You can view your existing data, but writes are locked until you start a 14-day free trial or activate a license key.";
    const add = document.getElementById("add-btn");
    add.classList.add("btn-locked");
    add.title = "Locked: license required";
    render();
  } catch (e) {}
}

function showTrialNudge() {
  const input = document.getElementById("trial-key-input");
  input.focus();
  input.style.borderColor = "var(--rust)";
  setTimeout(() => { input.style.borderColor = ""; }, 1500);
}

async function activateLicense() {
  const input = document.getElementById("trial-key-input");
  const button = document.getElementById("trial-activate-btn");
  const msg = document.getElementById("trial-msg");
  const key = (input.value || "").trim();
  if (!key) {
    msg.className = "trial-msg error";
    msg.textContent = "Paste your license key first";
    input.focus();
    return;
  }
  button.disabled = true;
  msg.className = "trial-msg";
  msg.textContent = "Activating...";
  try {
    const resp = await fetch(`${API}/license/activate`, {
      method: "POST",
      headers: {"Content-Type": "application/json"},
      body: JSON.stringify({license_key: key}),
    });
    const result = await resp.json();
    if (!resp.ok) {
      msg.className = "trial-msg error";
      msg.textContent = result.error || "Activation failed";
      button.disabled = false;
      return;
    }
    msg.className = "trial-msg success";
    msg.textContent = `Activated (${result.tier}). Reloading...`;
    setTimeout(() => location.reload(), 800);
  } catch (e) {
    msg.className = "trial-msg error";
    msg.textContent = "Network error: " + e.message;
    button.disabled = false;
  }
}

document.getElementById("add-btn").onclick = openNew;
document.getElementById("search").oninput = render;
document.getElementById("filter-status").onchange = render;
document.getElementById("mbg").onclick = event => { if (event.target.id === "mbg") closeModal(); };
document.getElementById("trial-activate-btn").onclick = activateLicense;
document.getElementById("trial-key-input").addEventListener("keydown", e => { if (e.key === "Enter") activateLicense(); });
document.addEventListener("keydown", e => { if (e.key === "Escape") closeModal(); });

fetch(`${API}/config`)
  .then(r => r.json())
  .then(applyConfig)
  .catch(() => {})
  .finally(() => { checkTrialState(); loadAll(); });
"""


def _fields_json() -> str:
    payload = [
        {**asdict(f), "options": list(f.options)} for f in FIELDS
    ]
    return json.dumps(payload).replace("</", "<\\/")


def _header_cells() -> str:
    cells = "".join(f"<th>{html.escape(f.label)}</th>" for f in FIELDS)
    return cells + "<th></th>"


def _status_options() -> str:
    options = "".join(
        f'<option value="{html.escape(s)}">{html.escape(s)}</option>' for s in STATUSES
    )
    return '<option value="">All Status</option>' + options


@lru_cache(maxsize=1)
def render_dashboard() -> str:
    """Return the complete dashboard page."""
    script = _SCRIPT.replace("__FIELDS__", _fields_json())
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
        "<meta name=\"viewport\" content=\"width=device-width,initial-scale=1.0\">"
        "<title>Permit</title>"
        f"<style>{_STYLE}</style></head><body>\n"
        "<div class=\"trial-bar\" id=\"trial-bar\">"
        "<div class=\"trial-bar-msg\"><strong>License Required</strong>"
        "<span id=\"trial-bar-text\"></span></div>"
        "<div class=\"trial-bar-actions\">"
        "<a class=\"btn-trial\" id=\"trial-link\" href=\"#\" target=\"_blank\" "
        "rel=\"noopener\">Start 14-Day Trial</a>"
        "<span>or</span>"
        "<input type=\"text\" class=\"key-input\" id=\"trial-key-input\" "
        "placeholder=\"SY-...\" autocomplete=\"off\" spellcheck=\"false\">"
        "<button class=\"btn\" id=\"trial-activate-btn\">Activate</button>"
        "<span class=\"trial-msg\" id=\"trial-msg\"></span>"
        "</div></div>\n"
        "<div class=\"hdr\"><h1><span>&#9670;</span> PERMIT</h1>"
        "<button class=\"btn btn-p\" id=\"add-btn\">+ Add</button></div>\n"
        "<div class=\"main\">"
        "<div class=\"stats\" id=\"stats\"></div>"
        "<div class=\"toolbar\">"
        "<input class=\"search\" id=\"search\" placeholder=\"Search...\">"
        f"<select class=\"filter-sel\" id=\"filter-status\">{_status_options()}</select>"
        "</div>"
        "<div class=\"count-label\" id=\"count\"></div>"
        "<div class=\"tbl-wrap\"><table class=\"tbl\"><thead>"
        f"<tr id=\"head-row\">{_header_cells()}</tr>"
        "</thead><tbody id=\"tbody\"></tbody></table></div></div>\n"
        "<div class=\"modal-bg\" id=\"mbg\"><div class=\"modal\" id=\"mdl\"></div></div>\n"
        f"<script>{script}</script></body></html>"
    )