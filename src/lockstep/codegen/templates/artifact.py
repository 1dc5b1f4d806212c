from mako.template import Template

# One client module per unit. Functions take the client-resident state (and
# the action input for parameterized actions); derived functions return a
# value, actions return a state delta.
ARTIFACT_TEMPLATE = Template(
	"""// Generated by lockstep for ${unit}. Do not edit.
% for line in imports:
${line}
% endfor
% if imports:

% endif
export default {
% for fn in fns:
  ${fn.name}(${", ".join(fn.params)}) {
    return ${fn.body};
  },
% endfor
  __derives__: ${derives},
  __fields__: ${fields},
  __graph__: ${graph},
  __animated__: ${animated},
};
"""
)
