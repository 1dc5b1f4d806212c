from mako.template import Template

# Registry of the current artifact per unit, sorted by unit name
MANIFEST_TEMPLATE = Template(
	"""// Generated by lockstep. Do not edit; regenerated on every build.
const registry = {};

% for entry in entries:
import ${entry.import_name} from "./${entry.unit}/${entry.filename}";
% endfor

% for entry in entries:
registry[${entry.unit_literal}] = ${entry.import_name};
% endfor

export default registry;
"""
)
