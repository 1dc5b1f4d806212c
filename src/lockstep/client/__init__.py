from lockstep.client.phases import PHASE_CLASSES as PHASE_CLASSES
from lockstep.client.phases import AnimatedField as AnimatedField
from lockstep.client.phases import PhaseDelegate as PhaseDelegate
from lockstep.client.synced import SyncedField as SyncedField
from lockstep.client.synced import SyncedFieldStore as SyncedFieldStore
from lockstep.client.synced import flatten_state as flatten_state
