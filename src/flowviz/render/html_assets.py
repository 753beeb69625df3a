"""Static assets embedded by the HTML renderer: themed CSS and client script.

Kept apart from ``render.html`` so the layout code stays readable. Both
generators are pure functions of their flags, so the same options always
produce the same page.

The client script reads three globals written by the page:

    window.__WORKFLOW_IR__       IR mapping (``WorkflowIR.to_dict()``)
    window.__WORKFLOW_SNAPSHOTS__ list of {index, ts, event_type, ir}
    window.__PERFORMANCE_DATA__  {heat, metric, stats, thresholds}
"""

from __future__ import annotations

THEMES = ("auto", "light", "dark")

_LIGHT_VARS = """
    --wv-bg: #ffffff;
    --wv-panel: #f9fafb;
    --wv-border: #e5e7eb;
    --wv-text: #111827;
    --wv-muted: #6b7280;
    --wv-edge: #9ca3af;
    --wv-accent: #2563eb;
"""

_DARK_VARS = """
    --wv-bg: #111827;
    --wv-panel: #1f2937;
    --wv-border: #374151;
    --wv-text: #f9fafb;
    --wv-muted: #9ca3af;
    --wv-edge: #6b7280;
    --wv-accent: #60a5fa;
"""

_BASE_CSS = """
* { box-sizing: border-box; }
body { margin: 0; font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
       background: var(--wv-bg); color: var(--wv-text); }
.workflow-visualizer { display: flex; flex-direction: column; height: 100vh; }
.wv-header { display: flex; align-items: center; justify-content: space-between;
             padding: 12px 16px; border-bottom: 1px solid var(--wv-border); background: var(--wv-panel); }
.wv-header h1 { font-size: 16px; margin: 0; }
.wv-controls { display: flex; gap: 8px; align-items: center; }
.wv-btn { background: var(--wv-bg); color: var(--wv-text); border: 1px solid var(--wv-border);
          border-radius: 6px; padding: 4px 10px; font-size: 13px; cursor: pointer; }
.wv-btn:hover { border-color: var(--wv-accent); }
.wv-btn--icon { width: 32px; padding: 4px 0; }
.wv-btn--active { background: var(--wv-accent); color: #fff; }
.wv-main { display: flex; flex: 1; min-height: 0; }
.wv-diagram { flex: 1; overflow: hidden; cursor: grab; }
.wv-diagram.wv-dragging { cursor: grabbing; }
.wv-diagram svg { width: 100%; height: 100%; }
.wv-inspector { width: 300px; border-left: 1px solid var(--wv-border); background: var(--wv-panel);
                overflow-y: auto; }
.wv-inspector-header { padding: 12px 16px; border-bottom: 1px solid var(--wv-border); }
.wv-inspector-header h2 { font-size: 14px; margin: 0; }
.wv-inspector-content { padding: 12px 16px; font-size: 13px; }
.wv-inspector-content dt { color: var(--wv-muted); margin-top: 8px; }
.wv-inspector-content dd { margin: 2px 0 0 0; word-break: break-word; }
.wv-inspector-content pre { margin: 0; white-space: pre-wrap; font-size: 12px; }
.wv-empty { color: var(--wv-muted); }
.wv-note { color: var(--wv-muted); font-size: 12px; }
.wv-timeline { border-top: 1px solid var(--wv-border); padding: 8px 16px; background: var(--wv-panel); }
.wv-timeline-controls { display: flex; gap: 8px; align-items: center; margin-top: 6px; }
.wv-timeline-time { color: var(--wv-muted); font-size: 12px; margin-left: auto; }

.wv-node rect { fill: #f3f4f6; stroke: #9ca3af; stroke-width: 2; }
.wv-node text { text-anchor: middle; dominant-baseline: middle; font-size: 12px; fill: #111827; }
.wv-node .wv-node-timing { font-size: 10px; fill: #6b7280; }
.wv-node { cursor: pointer; }
.wv-node--selected rect { stroke: var(--wv-accent); stroke-width: 3; }
.wv-node--running rect { fill: #fef3c7; stroke: #f59e0b; }
.wv-node--success rect { fill: #d1fae5; stroke: #10b981; }
.wv-node--error rect { fill: #fee2e2; stroke: #ef4444; }
.wv-node--aborted rect { fill: #f3f4f6; stroke: #6b7280; stroke-dasharray: 5 5; }
.wv-node--cached rect { fill: #dbeafe; stroke: #3b82f6; }
.wv-node--skipped rect { fill: #f9fafb; stroke: #d1d5db; stroke-dasharray: 5 5; }
.wv-stream rect { fill: #ede9fe; stroke: #8b5cf6; }

.wv-container > rect { fill: none; stroke: var(--wv-border); stroke-width: 2; stroke-dasharray: 6 4; }
.wv-container--parallel > rect { stroke: #8b5cf6; }
.wv-container--race > rect { stroke: #f97316; }
.wv-container--decision > rect { stroke: #0ea5e9; }
.wv-container-label { font-size: 10px; font-weight: 600; fill: var(--wv-muted); letter-spacing: 0.05em; }

.wv-edge { stroke: var(--wv-edge); stroke-width: 2; fill: none; }
.wv-edge-arrow { fill: var(--wv-edge); }

.wv-heatmap-on .wv-heat--cold rect { fill: #dbeafe; stroke: #3b82f6; }
.wv-heatmap-on .wv-heat--cool rect { fill: #ccfbf1; stroke: #14b8a6; }
.wv-heatmap-on .wv-heat--neutral rect { fill: #f3f4f6; stroke: #6b7280; }
.wv-heatmap-on .wv-heat--warm rect { fill: #fef3c7; stroke: #f59e0b; }
.wv-heatmap-on .wv-heat--hot rect { fill: #fed7aa; stroke: #f97316; stroke-width: 3; }
.wv-heatmap-on .wv-heat--critical rect { fill: #fecaca; stroke: #ef4444; stroke-width: 3; }
"""


def generate_styles(theme: str = "auto") -> str:
    """CSS for the page; ``auto`` follows ``prefers-color-scheme``."""
    if theme == "dark":
        return f":root {{{_DARK_VARS}}}\n{_BASE_CSS}"
    if theme == "light":
        return f":root {{{_LIGHT_VARS}}}\n{_BASE_CSS}"
    return (
        f":root {{{_LIGHT_VARS}}}\n"
        f"@media (prefers-color-scheme: dark) {{ :root {{{_DARK_VARS}}} }}\n"
        f"{_BASE_CSS}"
    )


# ---------------------------------------------------------------------------
# Client script
# ---------------------------------------------------------------------------

_CORE_JS = """
(function () {
  'use strict';

  var HEAT_LEVELS = ['cold', 'cool', 'neutral', 'warm', 'hot', 'critical'];
  var selectedNodeId = null;
  var currentIR = window.__WORKFLOW_IR__ || null;
  var workflowData = buildWorkflowDataFromIR(currentIR);

  function safeStringify(value) {
    var seen = [];
    try {
      return JSON.stringify(value, function (key, v) {
        if (typeof v === 'bigint') return v.toString();
        if (v !== null && typeof v === 'object') {
          if (seen.indexOf(v) !== -1) return '[Circular]';
          seen.push(v);
        }
        return v;
      }, 2);
    } catch (e) {
      return '[unserializable]';
    }
  }

  function buildWorkflowDataFromIR(ir) {
    var nodes = {};
    function collect(list) {
      (list || []).forEach(function (node) {
        nodes[node.id] = {
          id: node.id,
          name: node.name,
          type: node.type,
          state: node.state,
          key: node.key,
          durationMs: node.duration_ms,
          startTs: node.start_ts,
          error: node.error !== undefined && node.error !== null ? node.error : undefined,
          retryCount: node.retry_count,
          input: node.input,
          output: node.output,
          namespace: node.namespace,
          writeCount: node.write_count,
          readCount: node.read_count,
          streamState: node.stream_state,
          condition: node.condition,
          decisionValue: node.decision_value,
          branchTaken: node.branch_taken,
          branches: node.branches
        };
        collect(node.children);
        (node.branches || []).forEach(function (branch) { collect(branch.children); });
      });
    }
    if (ir && ir.root) collect(ir.root.children);
    return { nodes: nodes, hooks: ir ? ir.hooks : null };
  }

  function nodeElements() {
    return document.querySelectorAll('.wv-node[data-node-id]');
  }

  function setStateClass(el, state) {
    Array.prototype.slice.call(el.classList).forEach(function (cls) {
      if (cls.indexOf('wv-node--') === 0 && cls !== 'wv-node--selected') el.classList.remove(cls);
    });
    if (state) el.classList.add('wv-node--' + state);
  }

  function renderIR(ir) {
    currentIR = ir;
    workflowData = buildWorkflowDataFromIR(ir);
    nodeElements().forEach(function (el) {
      var data = workflowData.nodes[el.getAttribute('data-node-id')];
      setStateClass(el, data ? data.state : 'pending');
    });
    if (selectedNodeId !== null) selectNode(selectedNodeId);
    applyHeatmap();
  }

  function addField(list, label, value) {
    if (value === undefined || value === null || value === '') return;
    var dt = document.createElement('dt');
    dt.textContent = label;
    var dd = document.createElement('dd');
    if (typeof value === 'object') {
      var pre = document.createElement('pre');
      pre.textContent = safeStringify(value);
      dd.appendChild(pre);
    } else {
      dd.textContent = String(value);
    }
    list.appendChild(dt);
    list.appendChild(dd);
  }

  function selectNode(nodeId) {
    selectedNodeId = nodeId;
    nodeElements().forEach(function (el) {
      el.classList.toggle('wv-node--selected', el.getAttribute('data-node-id') === nodeId);
    });
    var content = document.getElementById('inspector-content');
    if (!content) return;
    content.textContent = '';
    var node = workflowData.nodes[nodeId];
    if (!node) {
      var empty = document.createElement('p');
      empty.className = 'wv-empty';
      empty.textContent = 'Select a node to inspect';
      content.appendChild(empty);
      return;
    }
    var list = document.createElement('dl');
    addField(list, 'Name', node.name);
    addField(list, 'Key', node.key);
    addField(list, 'Type', node.type);
    addField(list, 'State', node.state);
    addField(list, 'Duration (ms)', node.durationMs);
    addField(list, 'Retries', node.retryCount);
    if (node.error !== undefined) addField(list, 'Error', node.error);
    addField(list, 'Input', node.input);
    addField(list, 'Output', node.output);
    addField(list, 'Namespace', node.namespace);
    addField(list, 'Writes', node.writeCount);
    addField(list, 'Reads', node.readCount);
    addField(list, 'Condition', node.condition);
    addField(list, 'Decision value', node.decisionValue);
    addField(list, 'Branch taken', node.branchTaken);
    var hooks = workflowData.hooks;
    if (hooks && hooks.on_after_step) {
      addField(list, 'onAfterStep hook', hooks.on_after_step[node.key || node.id] || hooks.on_after_step[node.id]);
    }
    content.appendChild(list);
  }

  document.addEventListener('click', function (event) {
    var target = event.target.closest ? event.target.closest('.wv-node[data-node-id]') : null;
    if (target) selectNode(target.getAttribute('data-node-id'));
  });
"""

_ZOOM_JS = """
  var scale = 1, panX = 0, panY = 0;
  var root = document.querySelector('.wv-root');
  var diagram = document.getElementById('diagram');

  function applyTransform() {
    if (root) root.setAttribute('transform', 'translate(' + panX + ',' + panY + ') scale(' + scale + ')');
  }

  function zoom(factor) {
    scale = Math.min(4, Math.max(0.2, scale * factor));
    applyTransform();
  }

  function bindClick(id, fn) {
    var el = document.getElementById(id);
    if (el) el.addEventListener('click', fn);
  }

  bindClick('zoom-in', function () { zoom(1.2); });
  bindClick('zoom-out', function () { zoom(1 / 1.2); });
  bindClick('zoom-reset', function () { scale = 1; panX = 0; panY = 0; applyTransform(); });

  if (diagram) {
    var dragging = false, lastX = 0, lastY = 0;
    diagram.addEventListener('wheel', function (event) {
      event.preventDefault();
      zoom(event.deltaY < 0 ? 1.1 : 1 / 1.1);
    }, { passive: false });
    diagram.addEventListener('mousedown', function (event) {
      dragging = true; lastX = event.clientX; lastY = event.clientY;
      diagram.classList.add('wv-dragging');
    });
    window.addEventListener('mousemove', function (event) {
      if (!dragging) return;
      panX += event.clientX - lastX; panY += event.clientY - lastY;
      lastX = event.clientX; lastY = event.clientY;
      applyTransform();
    });
    window.addEventListener('mouseup', function () {
      dragging = false;
      diagram.classList.remove('wv-dragging');
    });
  }

  document.addEventListener('keydown', function (event) {
    if (event.key === '+' || event.key === '=') zoom(1.2);
    else if (event.key === '-') zoom(1 / 1.2);
    else if (event.key === '0') { scale = 1; panX = 0; panY = 0; applyTransform(); }
  });
"""

_HEATMAP_JS = """
  var heatmapOn = false;
  var heatmapMetric = null;

  function heatLevel(value, thresholds) {
    var t = thresholds || { cool: 0.2, neutral: 0.4, warm: 0.6, hot: 0.8, critical: 0.95 };
    if (value >= t.critical) return 'critical';
    if (value >= t.hot) return 'hot';
    if (value >= t.warm) return 'warm';
    if (value >= t.neutral) return 'neutral';
    if (value >= t.cool) return 'cool';
    return 'cold';
  }

  function heatFor(nodeId) {
    var perf = window.__PERFORMANCE_DATA__;
    var node = workflowData.nodes[nodeId];
    if (!perf || !perf.heat) return undefined;
    var heat = perf.heat;
    var keys = node ? [node.key, node.name, nodeId] : [nodeId];
    for (var i = 0; i < keys.length; i++) {
      if (keys[i] && Object.prototype.hasOwnProperty.call(heat, keys[i])) return heat[keys[i]];
    }
    return undefined;
  }

  function applyHeatmap() {
    var perf = window.__PERFORMANCE_DATA__;
    var metricMatches = !perf || !heatmapMetric || perf.metric === heatmapMetric;
    var note = document.getElementById('heatmap-note');
    if (note) note.textContent = metricMatches ? '' : 'No data for this metric';
    nodeElements().forEach(function (el) {
      HEAT_LEVELS.forEach(function (level) { el.classList.remove('wv-heat--' + level); });
      if (!heatmapOn || !metricMatches) return;
      var value = heatFor(el.getAttribute('data-node-id'));
      if (value !== undefined) el.classList.add('wv-heat--' + heatLevel(value, perf.thresholds));
    });
    var visualizer = document.querySelector('.workflow-visualizer');
    if (visualizer) visualizer.classList.toggle('wv-heatmap-on', heatmapOn);
  }

  var heatToggle = document.getElementById('heatmap-toggle');
  if (heatToggle) {
    heatToggle.addEventListener('click', function () {
      heatmapOn = !heatmapOn;
      heatToggle.classList.toggle('wv-btn--active', heatmapOn);
      applyHeatmap();
    });
  }
  var metricSelect = document.getElementById('heatmap-metric');
  if (metricSelect) {
    heatmapMetric = metricSelect.value;
    metricSelect.addEventListener('change', function () {
      heatmapMetric = metricSelect.value;
      applyHeatmap();
    });
  }
"""

_NO_HEATMAP_JS = """
  function applyHeatmap() {}
"""

_TIMELINE_JS = """
  var snapshots = window.__WORKFLOW_SNAPSHOTS__ || [];
  var currentSnapshotIndex = snapshots.length ? snapshots.length - 1 : -1;
  var playTimer = null;
  var baseIntervalMs = 500;
  var slider = document.getElementById('tt-slider');
  var timeLabel = document.getElementById('tt-time');
  var playBtn = document.getElementById('tt-play');
  var pauseBtn = document.getElementById('tt-pause');
  var speedSelect = document.getElementById('tt-speed');

  function updateTimeline() {
    if (slider) {
      slider.max = String(Math.max(0, snapshots.length - 1));
      slider.value = String(Math.max(0, currentSnapshotIndex));
    }
    if (timeLabel) {
      timeLabel.textContent = (snapshots.length ? currentSnapshotIndex + 1 : 0) + ' / ' + snapshots.length;
    }
    if (playBtn) playBtn.style.display = playTimer ? 'none' : '';
    if (pauseBtn) pauseBtn.style.display = playTimer ? '' : 'none';
  }

  function seek(index) {
    if (!snapshots.length) { currentSnapshotIndex = -1; updateTimeline(); return; }
    currentSnapshotIndex = Math.min(snapshots.length - 1, Math.max(0, index));
    renderIR(snapshots[currentSnapshotIndex].ir);
    updateTimeline();
  }

  function pause() {
    if (playTimer) { clearInterval(playTimer); playTimer = null; }
    updateTimeline();
  }

  function play() {
    if (playTimer || !snapshots.length) return;
    if (currentSnapshotIndex >= snapshots.length - 1) seek(0);
    var speed = parseFloat(speedSelect ? speedSelect.value : '1') || 1;
    playTimer = setInterval(function () {
      if (currentSnapshotIndex >= snapshots.length - 1) { pause(); return; }
      seek(currentSnapshotIndex + 1);
    }, baseIntervalMs / speed);
    updateTimeline();
  }

  if (slider) slider.addEventListener('input', function () { pause(); seek(parseInt(slider.value, 10)); });
  if (playBtn) playBtn.addEventListener('click', play);
  if (pauseBtn) pauseBtn.addEventListener('click', pause);
  if (speedSelect) speedSelect.addEventListener('change', function () {
    if (playTimer) { pause(); play(); }
  });
  var prevBtn = document.getElementById('tt-prev');
  var nextBtn = document.getElementById('tt-next');
  if (prevBtn) prevBtn.addEventListener('click', function () { pause(); seek(currentSnapshotIndex - 1); });
  if (nextBtn) nextBtn.addEventListener('click', function () { pause(); seek(currentSnapshotIndex + 1); });
  document.addEventListener('keydown', function (event) {
    if (event.key === 'ArrowLeft') { pause(); seek(currentSnapshotIndex - 1); }
    else if (event.key === 'ArrowRight') { pause(); seek(currentSnapshotIndex + 1); }
    else if (event.key === ' ') { event.preventDefault(); if (playTimer) pause(); else play(); }
  });
  updateTimeline();
"""

_END_JS = """
  renderIR(currentIR);
})();
"""


def generate_client_script(*, interactive: bool = True, time_travel: bool = True, heatmap: bool = True) -> str:
    """Client script for the enabled features.

    Node selection and state refresh are always present; pan/zoom,
    heatmap and the timeline are included only when enabled.
    """
    parts = [_CORE_JS]
    if interactive:
        parts.append(_ZOOM_JS)
    parts.append(_HEATMAP_JS if heatmap else _NO_HEATMAP_JS)
    if time_travel:
        parts.append(_TIMELINE_JS)
    parts.append(_END_JS)
    return "".join(parts)


__all__ = ["THEMES", "generate_styles", "generate_client_script"]
