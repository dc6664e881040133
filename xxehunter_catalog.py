"""
Sink catalog, rule descriptors and the framework version gate.

Everything in this module is built once at import time and never mutated, so
worker threads read it without locking.

The framework type catalog is a deliberately small model of the .NET XML
stack: the types whose defaults or overloads decide whether DTD processing
and external entity resolution are enabled, plus the handful of stream and
primitive types needed to pick an overload.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, NamedTuple, Optional, Tuple

from xxehunter_model import Symbol, SymbolKind

logger = logging.getLogger(__name__)

CTOR = '.ctor'
NULL_TYPE = '<null>'


# ============================================================================
# Framework versions
# ============================================================================

class FrameworkVersion(NamedTuple):
    major: int
    minor: int
    build: int = 0

    def __str__(self):
        return f"{self.major}.{self.minor}.{self.build}"


SECURE_DEFAULTS_VERSION = FrameworkVersion(4, 5, 2)
# .NET Core, .NET 5+ and netstandard2.1 never load the .NET Framework XML stack
UNIFIED_PLATFORM = FrameworkVersion(5, 0, 0)

_NETFX_TFM = re.compile(r'^net(\d)(\d)(\d)?$')
_MODERN_TFM = re.compile(r'^net(\d+)\.(\d+)(?:-[\w.]+)?$')
_CORE_TFM = re.compile(r'^netcoreapp\d+(?:\.\d+)?$')
_STANDARD_TFM = re.compile(r'^netstandard(\d+)\.(\d+)$')
_DOTTED = re.compile(r'^v?(\d+)\.(\d+)(?:\.(\d+))?$')
_FRAMEWORK_NAME = re.compile(r'^\s*([.\w]+)\s*,\s*Version\s*=\s*(v?[\d.]+)', re.IGNORECASE)

_NETSTANDARD_FLOOR = MappingProxyType({
    (1, 0): FrameworkVersion(4, 5), (1, 1): FrameworkVersion(4, 5), (1, 2): FrameworkVersion(4, 5, 1),
    (1, 3): FrameworkVersion(4, 6), (1, 4): FrameworkVersion(4, 6, 1), (1, 5): FrameworkVersion(4, 6, 1),
    (1, 6): FrameworkVersion(4, 6, 1), (2, 0): FrameworkVersion(4, 6, 1), (2, 1): UNIFIED_PLATFORM,
})


def parse_target_framework(text: Optional[str]) -> Optional[FrameworkVersion]:
    """Map a target framework moniker or version string to an ordered version.

    Returns ``None`` for anything unrecognised; callers treat that as
    "unsafe defaults still in effect".
    """
    if not text:
        return None
    value = text.strip()
    match = _FRAMEWORK_NAME.match(value)
    if match:
        family, version = match.group(1).lower(), match.group(2)
        parsed = _parse_dotted(version)
        if parsed is None:
            return None
        if family == '.netframework':
            return parsed
        if family == '.netcoreapp':
            return max(parsed, UNIFIED_PLATFORM)
        if family == '.netstandard':
            return _NETSTANDARD_FLOOR.get((parsed.major, parsed.minor))
        return None

    lowered = value.lower()
    match = _NETFX_TFM.match(lowered)
    if match:
        return FrameworkVersion(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))
    match = _MODERN_TFM.match(lowered)
    if match and int(match.group(1)) >= 5:
        return FrameworkVersion(int(match.group(1)), int(match.group(2)))
    if _CORE_TFM.match(lowered):
        return UNIFIED_PLATFORM
    match = _STANDARD_TFM.match(lowered)
    if match:
        return _NETSTANDARD_FLOOR.get((int(match.group(1)), int(match.group(2))))
    return _parse_dotted(lowered)


def _parse_dotted(text: str) -> Optional[FrameworkVersion]:
    match = _DOTTED.match(text.strip().lower())
    if not match:
        return None
    return FrameworkVersion(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))


# ============================================================================
# Framework type catalog
# ============================================================================

@dataclass(frozen=True)
class Overload:
    params: Tuple[str, ...]
    returns: Optional[str] = None
    static: bool = False


@dataclass(frozen=True)
class KnownType:
    name: str
    base: Optional[str] = 'Object'
    interfaces: Tuple[str, ...] = ()
    properties: Mapping[str, str] = field(default_factory=dict)
    static_properties: Mapping[str, str] = field(default_factory=dict)
    methods: Mapping[str, Tuple[Overload, ...]] = field(default_factory=dict)
    constructors: Tuple[Overload, ...] = ()
    enum_members: Tuple[str, ...] = ()
    is_interface: bool = False
    is_value_type: bool = False


def _ov(*params, returns=None, static=False) -> Overload:
    return Overload(tuple(params), returns, static)


def _reader_overloads(returns, *extra):
    """Path, stream, text reader and XmlReader variants of a load-style method."""
    return tuple(_ov(source, *extra, returns=returns)
                 for source in ('String', 'Stream', 'TextReader', 'XmlReader'))


_TYPES = (
    KnownType('Object', base=None),
    KnownType('ValueType'),
    KnownType('String', properties={'Length': 'Int32'}),
    KnownType('Boolean', base='ValueType', is_value_type=True),
    KnownType('Int32', base='ValueType', is_value_type=True),
    KnownType('Int64', base='ValueType', is_value_type=True),
    KnownType('Type'),
    KnownType('Uri'),
    KnownType('Stream'),
    KnownType('MemoryStream', base='Stream'),
    KnownType('FileStream', base='Stream'),
    KnownType('TextReader'),
    KnownType('StringReader', base='TextReader', constructors=(_ov('String'),)),
    KnownType('StreamReader', base='TextReader',
              constructors=(_ov('String'), _ov('Stream'))),
    KnownType('XmlParserContext'),
    KnownType('XmlNameTable'),
    KnownType('IXPathNavigable', base=None, is_interface=True),
    KnownType('XmlSpace', base='ValueType', enum_members=('None', 'Default', 'Preserve'),
              is_value_type=True),
    KnownType('XmlReadMode', base='ValueType', is_value_type=True,
              enum_members=('Auto', 'ReadSchema', 'IgnoreSchema', 'InferSchema', 'DiffGram',
                            'Fragment', 'InferTypedSchema')),
    KnownType('DtdProcessing', base='ValueType', is_value_type=True,
              enum_members=('Prohibit', 'Ignore', 'Parse')),

    KnownType('XmlResolver', properties={'Credentials': 'ICredentials'}),
    KnownType('XmlUrlResolver', base='XmlResolver', constructors=(_ov(),)),
    KnownType('XmlSecureResolver', base='XmlResolver',
              constructors=(_ov('XmlResolver', 'String'), _ov('XmlResolver', 'Evidence'),
                            _ov('XmlResolver', 'PermissionSet'))),

    KnownType('XmlNode', interfaces=('IXPathNavigable',),
              properties={'InnerXml': 'String', 'InnerText': 'String', 'OuterXml': 'String'}),
    KnownType(
        'XmlDocument', base='XmlNode',
        properties={'XmlResolver': 'XmlResolver', 'InnerXml': 'String',
                    'PreserveWhitespace': 'Boolean', 'DocumentElement': 'XmlElement'},
        methods={
            'Load': _reader_overloads(None),
            'LoadXml': (_ov('String'),),
            'Save': (_ov('String'), _ov('Stream'), _ov('TextWriter'), _ov('XmlWriter')),
            'CreateElement': (_ov('String', returns='XmlElement'),),
            'SelectSingleNode': (_ov('String', returns='XmlNode'),),
        },
        constructors=(_ov(), _ov('XmlNameTable'), _ov('XmlImplementation')),
    ),
    KnownType('XmlDataDocument', base='XmlDocument', constructors=(_ov(), _ov('DataSet'))),

    KnownType(
        'XmlReaderSettings',
        properties={'DtdProcessing': 'DtdProcessing', 'XmlResolver': 'XmlResolver',
                    'MaxCharactersFromEntities': 'Int64', 'ProhibitDtd': 'Boolean',
                    'ValidationType': 'ValidationType', 'IgnoreComments': 'Boolean'},
        constructors=(_ov(),),
    ),
    KnownType(
        'XmlReader',
        properties={'Settings': 'XmlReaderSettings'},
        methods={'Create': tuple(
            _ov(*params, returns='XmlReader', static=True) for params in (
                ('String',), ('String', 'XmlReaderSettings'),
                ('String', 'XmlReaderSettings', 'XmlParserContext'),
                ('Stream',), ('Stream', 'XmlReaderSettings'),
                ('Stream', 'XmlReaderSettings', 'String'),
                ('Stream', 'XmlReaderSettings', 'XmlParserContext'),
                ('TextReader',), ('TextReader', 'XmlReaderSettings'),
                ('TextReader', 'XmlReaderSettings', 'String'),
                ('TextReader', 'XmlReaderSettings', 'XmlParserContext'),
                ('XmlReader', 'XmlReaderSettings'),
            )),
            'Read': (_ov(returns='Boolean'),)},
    ),
    KnownType(
        'XmlTextReader', base='XmlReader',
        properties={'XmlResolver': 'XmlResolver', 'DtdProcessing': 'DtdProcessing',
                    'ProhibitDtd': 'Boolean', 'Normalization': 'Boolean'},
        constructors=tuple(_ov(*params) for params in (
            ('String',), ('Stream',), ('TextReader',), ('String', 'Stream'),
            ('String', 'TextReader'), ('Stream', 'XmlNameTable'), ('String', 'XmlNameTable'),
            ('TextReader', 'XmlNameTable'), ('Stream', 'XmlNodeType', 'XmlParserContext'),
            ('String', 'XmlNodeType', 'XmlParserContext'),
        )),
    ),

    KnownType(
        'XPathDocument', interfaces=('IXPathNavigable',),
        constructors=tuple(_ov(*params) for params in (
            ('String',), ('String', 'XmlSpace'), ('Stream',), ('TextReader',),
            ('XmlReader',), ('XmlReader', 'XmlSpace'),
        )),
    ),
    KnownType('XmlSchema', methods={'Read': tuple(
        _ov(source, 'ValidationEventHandler', returns='XmlSchema', static=True)
        for source in ('Stream', 'TextReader', 'XmlReader'))},
        constructors=(_ov(),)),

    KnownType(
        'DataSet',
        methods={
            'ReadXml': _reader_overloads('XmlReadMode') + _reader_overloads('XmlReadMode', 'XmlReadMode'),
            'ReadXmlSchema': _reader_overloads(None),
        },
        constructors=(_ov(), _ov('String')),
    ),
    KnownType(
        'DataTable',
        methods={
            'ReadXml': _reader_overloads('XmlReadMode'),
            'ReadXmlSchema': _reader_overloads(None),
        },
        constructors=(_ov(), _ov('String')),
    ),
    KnownType('DataViewManager', properties={'DataViewSettingCollectionString': 'String'},
              constructors=(_ov(), _ov('DataSet'))),
    KnownType(
        'XmlSerializer',
        methods={'Deserialize': (
            _ov('Stream', returns='Object'), _ov('TextReader', returns='Object'),
            _ov('XmlReader', returns='Object'), _ov('XmlReader', 'String', returns='Object'),
            _ov('XmlReader', 'XmlDeserializationEvents', returns='Object'),
            _ov('XmlReader', 'String', 'XmlDeserializationEvents', returns='Object'),
        )},
        constructors=(_ov('Type'), _ov('Type', 'String'), _ov('Type', 'XmlRootAttribute')),
    ),

    KnownType(
        'XsltSettings',
        properties={'EnableDocumentFunction': 'Boolean', 'EnableScript': 'Boolean'},
        static_properties={'Default': 'XsltSettings', 'TrustedXslt': 'XsltSettings'},
        constructors=(_ov(), _ov('Boolean', 'Boolean')),
    ),
    KnownType(
        'XslCompiledTransform',
        methods={
            'Load': (
                _ov('String'), _ov('XmlReader'), _ov('IXPathNavigable'), _ov('Type'),
                _ov('MethodInfo', 'Byte[]', 'Type[]'),
                _ov('String', 'XsltSettings', 'XmlResolver'),
                _ov('XmlReader', 'XsltSettings', 'XmlResolver'),
                _ov('IXPathNavigable', 'XsltSettings', 'XmlResolver'),
            ),
            'Transform': (_ov('String', 'String'), _ov('XmlReader', 'XmlWriter')),
        },
        constructors=(_ov(), _ov('Boolean')),
    ),
)


class FrameworkCatalog:
    """Case-insensitive lookup over the known framework types."""

    def __init__(self, types):
        self._types: Dict[str, KnownType] = {t.name.lower(): t for t in types}
        self._symbols: Dict[Tuple[str, str], Symbol] = {}
        for known in types:
            self._symbols[(known.name.lower(), '')] = Symbol(SymbolKind.TYPE, known.name, known.name)
            for name, type_name in known.properties.items():
                self._add(known, name, SymbolKind.PROPERTY, type_name, False)
            for name, type_name in known.static_properties.items():
                self._add(known, name, SymbolKind.PROPERTY, type_name, True)
            for name, overloads in known.methods.items():
                returns = {o.returns for o in overloads}
                self._add(known, name, SymbolKind.METHOD,
                          returns.pop() if len(returns) == 1 else None,
                          all(o.static for o in overloads))
            for member in known.enum_members:
                self._add(known, member, SymbolKind.FIELD, known.name, True)

    def _add(self, known, name, kind, type_name, static):
        self._symbols[(known.name.lower(), name.lower())] = Symbol(
            kind, name, type_name, known.name, is_static=static)

    def get(self, name: Optional[str]) -> Optional[KnownType]:
        if not name:
            return None
        return self._types.get(name.lower())

    def canonical(self, name: Optional[str]) -> Optional[str]:
        known = self.get(name)
        return known.name if known else None

    def type_symbol(self, name: str) -> Optional[Symbol]:
        return self._symbols.get((name.lower(), ''))

    def declared_member(self, type_name: str, member: str) -> Optional[Symbol]:
        """Member declared directly on ``type_name`` (no base walk)."""
        return self._symbols.get((type_name.lower(), member.lower()))

    def overloads(self, type_name: str, method: str) -> Tuple[Overload, ...]:
        known = self.get(type_name)
        if known is None:
            return ()
        if method == CTOR:
            return known.constructors
        for name, overloads in known.methods.items():
            if name.lower() == method.lower():
                return overloads
        return ()

    def is_reference_type(self, name: Optional[str]) -> bool:
        known = self.get(name)
        return known is None or not known.is_value_type


CATALOG = FrameworkCatalog(_TYPES)


# ============================================================================
# Sink signatures
# ============================================================================

def lacks_xml_reader(overload: Overload) -> bool:
    return 'XmlReader' not in overload.params


def takes_reader_settings(overload: Overload) -> bool:
    return 'XmlReaderSettings' in overload.params


def takes_xslt_settings(overload: Overload) -> bool:
    return 'XsltSettings' in overload.params and 'XmlResolver' in overload.params


@dataclass(frozen=True)
class SinkSignature:
    """A construction, call or property default that can enable DTD expansion."""
    tag: str
    owner: str
    member: str
    shape: Optional[Callable[[Overload], bool]] = None
    unsafe_by_default: bool = True
    min_safe_version: Optional[FrameworkVersion] = None
    unknown_is_unsafe: bool = False


_OVERLOAD_SINKS = tuple(
    SinkSignature('dtd-overload', owner, member, shape=lacks_xml_reader)
    for owner, member in (
        ('XmlDocument', 'Load'), ('XmlDocument', 'LoadXml'), ('XPathDocument', CTOR),
        ('XmlSchema', 'Read'), ('DataSet', 'ReadXml'), ('DataSet', 'ReadXmlSchema'),
        ('DataTable', 'ReadXml'), ('DataTable', 'ReadXmlSchema'),
        ('XmlSerializer', 'Deserialize'),
    )
)

# Property defaults of a freshly constructed object
_DEFAULT_SINKS = (
    SinkSignature('default', 'XmlDocument', 'XmlResolver', min_safe_version=SECURE_DEFAULTS_VERSION),
    SinkSignature('default', 'XmlTextReader', 'XmlResolver', min_safe_version=SECURE_DEFAULTS_VERSION),
    SinkSignature('default', 'XmlTextReader', 'DtdProcessing'),
    SinkSignature('default', 'XmlReaderSettings', 'XmlResolver', min_safe_version=SECURE_DEFAULTS_VERSION),
    SinkSignature('default', 'XmlReaderSettings', 'MaxCharactersFromEntities',
                  min_safe_version=SECURE_DEFAULTS_VERSION),
    SinkSignature('default', 'XmlReaderSettings', 'DtdProcessing', unsafe_by_default=False),
    SinkSignature('default', 'XsltSettings', 'EnableScript', unsafe_by_default=False),
    SinkSignature('default', 'XsltSettings', 'EnableDocumentFunction', unsafe_by_default=False),
)

# Explicit property assignments
_ASSIGNMENT_SINKS = (
    SinkSignature('assign', 'XmlDocument', 'XmlResolver', unknown_is_unsafe=True),
    SinkSignature('assign', 'XmlTextReader', 'XmlResolver', unknown_is_unsafe=True),
    SinkSignature('assign', 'XmlTextReader', 'DtdProcessing'),
    SinkSignature('assign', 'XmlTextReader', 'ProhibitDtd'),
    SinkSignature('assign', 'XmlReaderSettings', 'XmlResolver', unknown_is_unsafe=True),
    SinkSignature('assign', 'XmlReaderSettings', 'DtdProcessing'),
    SinkSignature('assign', 'XmlReaderSettings', 'ProhibitDtd'),
    SinkSignature('assign', 'XmlReaderSettings', 'MaxCharactersFromEntities'),
    SinkSignature('assign', 'XsltSettings', 'EnableScript', unknown_is_unsafe=True),
    SinkSignature('assign', 'XsltSettings', 'EnableDocumentFunction', unknown_is_unsafe=True),
    SinkSignature('info', 'XmlDocument', 'InnerXml'),
    SinkSignature('info', 'DataViewManager', 'DataViewSettingCollectionString'),
)

READER_CREATE_SINK = SinkSignature('reader-create', 'XmlReader', 'Create', shape=takes_reader_settings)
XSLT_LOAD_SINK = SinkSignature('xslt-load', 'XslCompiledTransform', 'Load', shape=takes_xslt_settings)

OVERLOAD_SINKS: Mapping[Tuple[str, str], SinkSignature] = MappingProxyType(
    {(s.owner, s.member): s for s in _OVERLOAD_SINKS})
DEFAULT_SINKS: Mapping[Tuple[str, str], SinkSignature] = MappingProxyType(
    {(s.owner, s.member): s for s in _DEFAULT_SINKS})
ASSIGNMENT_SINKS: Mapping[Tuple[str, str], SinkSignature] = MappingProxyType(
    {(s.owner, s.member): s for s in _ASSIGNMENT_SINKS})

# Types whose configuration is followed through a member
TRACKED_TYPES = frozenset({'XmlDocument', 'XmlTextReader', 'XmlReaderSettings', 'XsltSettings'})
SECURE_RESOLVER_TYPES = ('XmlSecureResolver',)
RESOLVER_BASE = 'XmlResolver'


# ============================================================================
# Version gate
# ============================================================================

class VersionGate:
    """Decides whether a signature's unsafe default still applies.

    An unknown version is treated as old: reporting is preferred over silence
    when the target framework cannot be determined.
    """

    def is_unsafe_for_version(self, signature: SinkSignature,
                              version: Optional[FrameworkVersion]) -> bool:
        if not signature.unsafe_by_default:
            return False
        if signature.min_safe_version is None:
            return True
        if version is None:
            return True
        return version < signature.min_safe_version


GATE = VersionGate()


# ============================================================================
# Rules and messages
# ============================================================================

class Severity(Enum):
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"

    @classmethod
    def parse(cls, value: str) -> 'Severity':
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"unknown severity {value!r}")


SEVERITY_ORDER = MappingProxyType({Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2})

DTD_PROCESSING = 'CA3075'
XSLT_PROCESSING = 'CA3076'
API_DESIGN = 'CA3077'

RULE_TITLES = MappingProxyType({
    DTD_PROCESSING: "Insecure DTD processing in XML",
    XSLT_PROCESSING: "Insecure XSLT script processing",
    API_DESIGN: "Insecure processing in API design, XmlDocument and XmlTextReader",
})


@dataclass(frozen=True)
class RuleDescriptor:
    rule_id: str
    key: str
    severity: Severity = Severity.WARNING
    fixable: bool = True

    @property
    def title(self) -> str:
        return RULE_TITLES[self.rule_id]


_DESCRIPTORS = (
    RuleDescriptor(DTD_PROCESSING, 'XmlDocumentWithNoSecureResolver'),
    RuleDescriptor(DTD_PROCESSING, 'XmlTextReaderConstructedWithNoSecureResolution'),
    RuleDescriptor(DTD_PROCESSING, 'XmlTextReaderSetInsecureResolution'),
    RuleDescriptor(DTD_PROCESSING, 'DoNotUseDtdProcessingOverloads'),
    RuleDescriptor(DTD_PROCESSING, 'XmlReaderCreateInsecureConstructed'),
    RuleDescriptor(DTD_PROCESSING, 'XmlReaderCreateInsecureInput'),
    RuleDescriptor(DTD_PROCESSING, 'DoNotUseSetInnerXml', Severity.INFO, fixable=False),
    RuleDescriptor(DTD_PROCESSING, 'ReviewDtdProcessingProperties', Severity.INFO, fixable=False),
    RuleDescriptor(XSLT_PROCESSING, 'XslCompiledTransformLoadInsecureConstructed'),
    RuleDescriptor(XSLT_PROCESSING, 'XslCompiledTransformLoadInsecureInput'),
    RuleDescriptor(API_DESIGN, 'XmlDocumentDerivedClassConstructorNoSecureXmlResolver'),
    RuleDescriptor(API_DESIGN, 'XmlDocumentDerivedClassNoConstructor'),
    RuleDescriptor(API_DESIGN, 'XmlDocumentDerivedClassSetInsecureXmlResolverInMethod'),
    RuleDescriptor(API_DESIGN, 'XmlTextReaderDerivedClassConstructorNoSecureSettings'),
    RuleDescriptor(API_DESIGN, 'XmlTextReaderDerivedClassNoConstructor'),
    RuleDescriptor(API_DESIGN, 'XmlTextReaderDerivedClassSetInsecureSettingsInMethod'),
)

RULES: Mapping[str, RuleDescriptor] = MappingProxyType({d.key: d for d in _DESCRIPTORS})

MESSAGES: Mapping[str, str] = MappingProxyType({
    'XmlDocumentWithNoSecureResolver':
        "Unsafe DTD processing: XmlDocument.XmlResolver is not set to null or an "
        "XmlSecureResolver instance.",
    'XmlTextReaderConstructedWithNoSecureResolution':
        "Unsafe DTD processing: XmlTextReader is created without prohibiting DTD processing "
        "and without a secure XmlResolver.",
    'XmlTextReaderSetInsecureResolution':
        "Unsafe DTD processing: XmlTextReader is configured with an insecure XmlResolver or "
        "with DtdProcessing.Parse.",
    'DoNotUseDtdProcessingOverloads':
        "Unsafe overload of '{0}'. Pass an XmlReader created with secure XmlReaderSettings "
        "instead.",
    'XmlReaderCreateInsecureConstructed':
        "XmlReader.Create is given XmlReaderSettings that enable DTD processing without a "
        "secure XmlResolver and a MaxCharactersFromEntities limit.",
    'XmlReaderCreateInsecureInput':
        "XmlReader.Create is given XmlReaderSettings from outside this member that are "
        "configured here to enable DTD processing without a secure XmlResolver.",
    'DoNotUseSetInnerXml':
        "Setting InnerXml parses markup with the document's XmlResolver. Load untrusted "
        "content through a secure XmlReader instead.",
    'ReviewDtdProcessingProperties':
        "DataViewSettingCollectionString is parsed as XML. Make sure the value comes from a "
        "trusted source.",
    'XslCompiledTransformLoadInsecureConstructed':
        "'{0}' loads an XSLT stylesheet with XsltSettings that enable scripts or the "
        "document() function, using an insecure XmlResolver.",
    'XslCompiledTransformLoadInsecureInput':
        "'{0}' loads an XSLT stylesheet with XsltSettings received from its caller and an "
        "insecure XmlResolver.",
    'XmlDocumentDerivedClassConstructorNoSecureXmlResolver':
        "The constructor of '{0}' does not set XmlResolver to null or an XmlSecureResolver "
        "instance.",
    'XmlDocumentDerivedClassNoConstructor':
        "'{0}' derives from XmlDocument but declares no constructor that sets XmlResolver to "
        "a secure value.",
    'XmlDocumentDerivedClassSetInsecureXmlResolverInMethod':
        "'{0}' sets the inherited XmlResolver to an insecure value.",
    'XmlTextReaderDerivedClassConstructorNoSecureSettings':
        "The constructor of '{0}' does not prohibit DTD processing and set a secure "
        "XmlResolver.",
    'XmlTextReaderDerivedClassNoConstructor':
        "'{0}' derives from XmlTextReader but declares no constructor that prohibits DTD "
        "processing and sets a secure XmlResolver.",
    'XmlTextReaderDerivedClassSetInsecureSettingsInMethod':
        "'{0}' enables DTD processing or sets an insecure XmlResolver on the inherited "
        "XmlTextReader settings.",
})


def format_message(key: str, arguments: Tuple[str, ...]) -> str:
    return MESSAGES[key].format(*arguments)
