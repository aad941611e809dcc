"""Assembly of the final game files from a completed session's context."""

import html
import json
import logging
from dataclasses import dataclass, field
from uuid import UUID

from game_cocreator.domain.content import (
    CharacterContent,
    GenerationContext,
    GraphicsContent,
    LevelContent,
    MechanicsContent,
    SoundContent,
    StoryContent,
    UIContent,
    UploadedContent,
    content_payload,
)
from game_cocreator.domain.errors import AssemblyFailure

_logger = logging.getLogger(__name__)

ARCHETYPE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("platformer", ("jump", "platform", "climb")),
    ("puzzle", ("puzzle", "match", "block", "tile", "swap")),
    ("arcade", ("shoot", "enemy", "enemies", "dodge", "blast")),
)
ARCHETYPES = ("platformer", "puzzle", "arcade", "generic")
REQUIRED_FILES = ("index.html", "game.js", "manifest.json")

_DEFAULT_PALETTE = ("#3498db", "#2ecc71", "#2c3e50", "#f1c40f")
# Element ids game.js writes to through hud().
_HUD_FIELDS = ("score", "lives", "level")
_CONTENT_FIELDS = (
    "character",
    "mechanics",
    "level",
    "graphics",
    "sound",
    "ui",
    "story",
)


@dataclass
class GameBlueprint:
    """Structured configuration derived from the selected content."""

    title: str
    archetype: str
    character: CharacterContent | None = None
    mechanics: MechanicsContent | None = None
    level: LevelContent | None = None
    graphics: GraphicsContent | None = None
    sound: SoundContent | None = None
    ui: UIContent | None = None
    story: StoryContent | None = None
    uploads: dict[str, UploadedContent] = field(default_factory=dict)

    @property
    def palette(self) -> list[str]:
        colors = list(self.graphics.color_palette) if self.graphics else []
        return colors + list(_DEFAULT_PALETTE[len(colors) :])

    def to_config(self) -> dict[str, object]:
        config: dict[str, object] = {"title": self.title, "genre": self.archetype}
        for name in _CONTENT_FIELDS:
            content = getattr(self, name)
            config[name] = content_payload(content) if content else None
        config["uploads"] = {
            step: content_payload(upload) for step, upload in self.uploads.items()
        }
        return config


@dataclass(frozen=True)
class AssemblyResult:
    """Files produced for one session."""

    title: str
    archetype: str
    files: dict[str, str]
    is_placeholder: bool = False
    diagnostics: tuple[str, ...] = ()


def infer_archetype(mechanics: MechanicsContent | None, fallback: str) -> str:
    """Map the dominant mechanic keyword to an output family."""
    if mechanics is not None:
        text = " ".join(
            [mechanics.core_loop, *mechanics.controls, *mechanics.objectives]
        ).lower()
        for archetype, keywords in ARCHETYPE_KEYWORDS:
            if any(keyword in text for keyword in keywords):
                return archetype
    return fallback if fallback in ARCHETYPES else "generic"


def build_blueprint(context: GenerationContext, category: str) -> GameBlueprint:
    """Collect typed content per step type into a blueprint."""
    blueprint = GameBlueprint(title="Interactive Game", archetype="generic")
    for step_type, content in context.items():
        if isinstance(content, UploadedContent):
            blueprint.uploads[step_type.value] = content
        else:
            setattr(blueprint, step_type.value, content)
    if blueprint.character is not None:
        blueprint.title = f"Adventures of {blueprint.character.name}"
    blueprint.archetype = infer_archetype(blueprint.mechanics, category)
    return blueprint


@dataclass
class AssetAssembler:
    """Produces the deliverable; degrades to a placeholder on any failure."""

    sdk_script_url: str | None = None

    def assemble(
        self, session_id: UUID, context: GenerationContext, category: str = "generic"
    ) -> AssemblyResult:
        """Return game files for a context; never raises."""
        try:
            result = self._build(context, category)
        except Exception as exc:
            _logger.exception("Assembly failed for session %s", session_id)
            return self.placeholder(context, reason=f"{type(exc).__name__}: {exc}")
        _logger.info(
            "Assembled %s game for session %s (%s files)",
            result.archetype,
            session_id,
            len(result.files),
        )
        return result

    def placeholder(self, context: GenerationContext, reason: str) -> AssemblyResult:
        """Return a minimal valid deliverable built from plain data only."""
        choices = {
            step_type.value: content.kind for step_type, content in context.items()
        }
        choices_json = html.escape(json.dumps(choices, indent=2))
        index = (
            "<!DOCTYPE html>\n<html>\n<head>\n"
            '<meta charset="UTF-8">\n<title>Interactive Game</title>\n'
            "</head>\n<body>\n<h1>Your game is almost ready</h1>\n"
            f"<p>Built from your choices:</p>\n<pre>{choices_json}</pre>\n"
            "</body>\n</html>\n"
        )
        manifest = {
            "name": "Interactive Game",
            "version": "1.0.0",
            "main": "index.html",
            "placeholder": True,
            "files": ["index.html", "game.js", "manifest.json"],
        }
        return AssemblyResult(
            title="Interactive Game",
            archetype="placeholder",
            files={
                "index.html": index,
                "game.js": "// Placeholder build\n",
                "manifest.json": json.dumps(manifest, indent=2),
            },
            is_placeholder=True,
            diagnostics=(reason,),
        )

    def _build(self, context: GenerationContext, category: str) -> AssemblyResult:
        blueprint = build_blueprint(context, category)
        files: dict[str, str] = {
            "index.html": _index_html(blueprint, self.sdk_script_url),
            "styles.css": _styles_css(blueprint),
            "game.js": _GAME_SCRIPTS[blueprint.archetype](blueprint),
            "config.json": json.dumps(blueprint.to_config(), indent=2),
        }
        if blueprint.character is not None:
            files["character.js"] = _character_js(blueprint.character)
        if blueprint.level is not None:
            files["level1.js"] = _level_js(blueprint.level, 1)
        files["manifest.json"] = json.dumps(
            {
                "name": blueprint.title,
                "version": "1.0.0",
                "description": f"Interactively created {blueprint.archetype} game",
                "main": "index.html",
                "assets": [upload.reference for upload in blueprint.uploads.values()],
                "files": sorted([*files, "manifest.json"]),
            },
            indent=2,
        )
        missing = [name for name in REQUIRED_FILES if not files.get(name)]
        if missing:
            raise AssemblyFailure(f"Missing files: {', '.join(missing)}")
        return AssemblyResult(
            title=blueprint.title, archetype=blueprint.archetype, files=files
        )


def _index_html(blueprint: GameBlueprint, sdk_script_url: str | None) -> str:
    title = html.escape(blueprint.title)
    scripts = []
    if sdk_script_url:
        scripts.append(f'<script src="{html.escape(sdk_script_url)}"></script>')
    if blueprint.character is not None:
        scripts.append('<script src="character.js"></script>')
    if blueprint.level is not None:
        scripts.append('<script src="level1.js"></script>')
    scripts.append('<script src="game.js"></script>')
    hud_lines = [
        f'      <div class="hud-item">{name.title()}: '
        f'<span id="hud-{name}">0</span></div>'
        for name in _HUD_FIELDS
    ]
    if blueprint.ui is not None:
        hud_lines.extend(
            f'      <div class="hud-item hud-label">{html.escape(component)}</div>'
            for component in blueprint.ui.components
        )
    hud_html = "\n".join(hud_lines)
    script_html = "\n  ".join(scripts)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <link rel="stylesheet" href="styles.css">
</head>
<body>
  <div id="game-container">
    <canvas id="gameCanvas" width="800" height="600"></canvas>
    <div id="game-ui">
{hud_html}
    </div>
    <div id="game-menu" class="menu hidden">
      <h2>Game over</h2>
      <button id="restart-btn">Play again</button>
    </div>
  </div>
  {script_html}
</body>
</html>
"""


def _styles_css(blueprint: GameBlueprint) -> str:
    primary, secondary, background = blueprint.palette[:3]
    return f"""body {{
  margin: 0;
  font-family: Arial, sans-serif;
  background-color: {background};
  color: white;
  overflow: hidden;
}}
#game-container {{
  position: relative;
  display: flex;
  justify-content: center;
  align-items: center;
  height: 100vh;
}}
#gameCanvas {{
  border: 2px solid {primary};
  border-radius: 8px;
  background-color: #000;
  max-width: 100%;
}}
#game-ui {{
  position: absolute;
  top: 20px;
  left: 20px;
}}
.hud-item {{
  background-color: rgba(0, 0, 0, 0.7);
  padding: 8px 16px;
  margin: 4px 0;
  color: {primary};
}}
.menu button {{
  background-color: {primary};
  border: none;
  color: white;
  padding: 12px 24px;
}}
.menu button:hover {{
  background-color: {secondary};
}}
.hidden {{
  display: none;
}}
"""


def _game_header(blueprint: GameBlueprint) -> str:
    config = json.dumps(blueprint.to_config(), indent=2)
    return (
        f"// {blueprint.archetype} game generated from interactive choices\n"
        f"const CONFIG = {config};\n"
        "const canvas = document.getElementById('gameCanvas');\n"
        "const ctx = canvas.getContext('2d');\n"
        "const keys = {};\n"
        "document.addEventListener('keydown', (e) => { keys[e.code] = true; });\n"
        "document.addEventListener('keyup', (e) => { keys[e.code] = false; });\n"
        "let score = 0;\n"
        "function hud(name, value) {\n"
        "  const el = document.getElementById('hud-' + name);\n"
        "  if (el) { el.textContent = value; }\n"
        "}\n"
    )


def _platformer_js(blueprint: GameBlueprint) -> str:
    controls = blueprint.mechanics.controls if blueprint.mechanics else []
    speed = 300 if any("fast" in control for control in controls) else 200
    jump = 600 if any("high" in control for control in controls) else 450
    color = blueprint.character.primary_color if blueprint.character else "#3498db"
    ground, coin = blueprint.palette[1], blueprint.palette[3]
    return _game_header(blueprint) + f"""
const player = {{ x: 50, y: 400, w: 32, h: 48, vx: 0, vy: 0, onGround: false }};
const platforms = [
  {{ x: 0, y: 580, w: 800, h: 20 }},
  {{ x: 200, y: 450, w: 150, h: 20 }},
  {{ x: 450, y: 350, w: 120, h: 20 }},
];
const coins = [{{ x: 250, y: 400 }}, {{ x: 500, y: 300 }}, {{ x: 700, y: 200 }}];
let last = performance.now();
function step(now) {{
  const dt = (now - last) / 1000;
  last = now;
  player.vx = keys.ArrowLeft ? -{speed} : keys.ArrowRight ? {speed} : player.vx * 0.8;
  if ((keys.ArrowUp || keys.Space) && player.onGround) {{
    player.vy = -{jump};
    player.onGround = false;
  }}
  player.vy += 800 * dt;
  player.x += player.vx * dt;
  player.y += player.vy * dt;
  player.onGround = false;
  for (const p of platforms) {{
    const overlaps = player.x < p.x + p.w && player.x + player.w > p.x;
    if (overlaps && player.vy > 0 && player.y + player.h >= p.y && player.y < p.y) {{
      player.y = p.y - player.h;
      player.vy = 0;
      player.onGround = true;
    }}
  }}
  for (const c of coins) {{
    if (!c.taken && Math.abs(player.x - c.x) < 24 && Math.abs(player.y - c.y) < 40) {{
      c.taken = true;
      score += 100;
      hud('score', score);
    }}
  }}
  ctx.clearRect(0, 0, canvas.width, canvas.height);
  ctx.fillStyle = {json.dumps(ground)};
  platforms.forEach((p) => ctx.fillRect(p.x, p.y, p.w, p.h));
  ctx.fillStyle = {json.dumps(coin)};
  coins.filter((c) => !c.taken).forEach((c) => ctx.fillRect(c.x, c.y, 20, 20));
  ctx.fillStyle = {json.dumps(color)};
  ctx.fillRect(player.x, player.y, player.w, player.h);
  requestAnimationFrame(step);
}}
requestAnimationFrame(step);
"""


def _puzzle_js(blueprint: GameBlueprint) -> str:
    colors = json.dumps(blueprint.palette[:4])
    return _game_header(blueprint) + f"""
const SIZE = 8;
const CELL = 60;
const COLORS = {colors};
const grid = Array.from({{ length: SIZE }}, () =>
  Array.from({{ length: SIZE }}, () => Math.floor(Math.random() * COLORS.length)));
let picked = null;
canvas.addEventListener('click', (e) => {{
  const x = Math.floor(e.offsetX / CELL);
  const y = Math.floor(e.offsetY / CELL);
  if (x >= SIZE || y >= SIZE) return;
  if (!picked) {{ picked = {{ x, y }}; return; }}
  if (Math.abs(picked.x - x) + Math.abs(picked.y - y) === 1) {{
    [grid[y][x], grid[picked.y][picked.x]] = [grid[picked.y][picked.x], grid[y][x]];
    clearMatches();
  }}
  picked = null;
  draw();
}});
function clearMatches() {{
  for (let y = 0; y < SIZE; y++) {{
    for (let x = 0; x < SIZE - 2; x++) {{
      const c = grid[y][x];
      if (c === grid[y][x + 1] && c === grid[y][x + 2]) {{
        for (let k = 0; k < 3; k++) {{
          grid[y][x + k] = Math.floor(Math.random() * COLORS.length);
        }}
        score += 30;
        hud('score', score);
      }}
    }}
  }}
}}
function draw() {{
  for (let y = 0; y < SIZE; y++) {{
    for (let x = 0; x < SIZE; x++) {{
      ctx.fillStyle = COLORS[grid[y][x]];
      ctx.fillRect(x * CELL + 2, y * CELL + 2, CELL - 4, CELL - 4);
    }}
  }}
}}
draw();
"""


def _arcade_js(blueprint: GameBlueprint) -> str:
    color = blueprint.character.primary_color if blueprint.character else "#3498db"
    enemy = blueprint.palette[3]
    return _game_header(blueprint) + f"""
const ship = {{ x: 380, y: 540, w: 40, h: 30 }};
const shots = [];
const enemies = [];
let lives = 3;
let cooldown = 0;
setInterval(() => {{
  enemies.push({{ x: Math.random() * 760, y: -30, w: 30, h: 30 }});
}}, 900);
function step() {{
  if (keys.ArrowLeft) ship.x = Math.max(0, ship.x - 6);
  if (keys.ArrowRight) ship.x = Math.min(canvas.width - ship.w, ship.x + 6);
  if (keys.Space && cooldown <= 0) {{
    shots.push({{ x: ship.x + 18, y: ship.y }});
    cooldown = 12;
  }}
  cooldown--;
  shots.forEach((s) => {{ s.y -= 9; }});
  enemies.forEach((e) => {{ e.y += 2.5; }});
  for (const e of enemies) {{
    for (const s of shots) {{
      const hit = s.x > e.x && s.x < e.x + e.w && s.y > e.y && s.y < e.y + e.h;
      if (!e.dead && hit) {{
        e.dead = true;
        s.y = -100;
        score += 50;
        hud('score', score);
      }}
    }}
    if (!e.dead && e.y > canvas.height) {{
      e.dead = true;
      lives--;
      hud('lives', lives);
    }}
  }}
  ctx.clearRect(0, 0, canvas.width, canvas.height);
  ctx.fillStyle = {json.dumps(color)};
  ctx.fillRect(ship.x, ship.y, ship.w, ship.h);
  ctx.fillStyle = {json.dumps(enemy)};
  enemies.filter((e) => !e.dead).forEach((e) => ctx.fillRect(e.x, e.y, e.w, e.h));
  ctx.fillStyle = '#ffffff';
  shots.forEach((s) => ctx.fillRect(s.x, s.y, 4, 10));
  if (lives > 0) requestAnimationFrame(step);
  else document.getElementById('game-menu').classList.remove('hidden');
}}
requestAnimationFrame(step);
"""


def _generic_js(blueprint: GameBlueprint) -> str:
    primary = blueprint.palette[0]
    return _game_header(blueprint) + f"""
const target = {{ x: 400, y: 300, r: 30 }};
canvas.addEventListener('click', (e) => {{
  if (Math.hypot(e.offsetX - target.x, e.offsetY - target.y) <= target.r) {{
    score += 10;
    hud('score', score);
    target.x = 40 + Math.random() * 720;
    target.y = 40 + Math.random() * 520;
  }}
  draw();
}});
function draw() {{
  ctx.clearRect(0, 0, canvas.width, canvas.height);
  ctx.fillStyle = {json.dumps(primary)};
  ctx.beginPath();
  ctx.arc(target.x, target.y, target.r, 0, Math.PI * 2);
  ctx.fill();
}}
draw();
"""


_GAME_SCRIPTS = {
    "platformer": _platformer_js,
    "puzzle": _puzzle_js,
    "arcade": _arcade_js,
    "generic": _generic_js,
}


def _character_js(character: CharacterContent) -> str:
    data = json.dumps(content_payload(character), indent=2)
    return f"""// Character definition
const CHARACTER = {data};
function drawCharacter(ctx, x, y) {{
  ctx.fillStyle = CHARACTER.primary_color;
  ctx.fillRect(x, y, 32, 48);
}}
"""


def _level_js(level: LevelContent, number: int) -> str:
    data = json.dumps(content_payload(level), indent=2)
    return f"""// Level {number}
const LEVEL_{number} = {data};
"""
