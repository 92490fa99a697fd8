"""
Puggle is a static site build pipeline: named tasks, run in dependency order
and in parallel, each feeding an asset tree through a well-known library.
"""
from .build import Build
from .config import MissingSidecarError, SiteConfig
from .core import Context, InputBuildSettings, Matcher, PathCalc, Rule, Step, StepUnavailableException
from .custody import Custodian, CustodyEntry
from .dependencies import Dependency, NodeExecDependency, PipDependency, WebExecDependency
from .favicon import FaviconStep
from .html import HTMLMinifierStep, JinjaPageStep, MissingHistoryError, UserefStep
from .images import ImageOptimizeStep, ResponsiveImageStep
from .include import RequestsFetchStep
from .paths import DirPathCalc, GlobMatcher, OutputDirPathCalc, REMatcher, WorkingDirPathCalc
from .presets import starter_tasks
from .scripts import ESLintStep, JSMinifierStep, LintError, ResourcePackerStep
from .simple import DirectCopyStep
from .styles import CSSMinifierStep, SassStep
from .tasks import FunctionTask, PipelineTask, SequenceTask, Task, TaskRegistry, TaskRunner
