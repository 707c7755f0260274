#!/usr/bin/python3

from collections import namedtuple
from enum import Enum
import re
import sys
import argparse
# Some helpful constant values that we'll be using.
Constants = namedtuple("Constants",["NUM_REGS", "MEM_SIZE", "REG_SIZE"])
constants = Constants(NUM_REGS = 8,
                      MEM_SIZE = 2**13,
                      REG_SIZE = 2**16)

ADDR_MASK = constants.MEM_SIZE - 1   # 13-bit memory address
WORD_MASK = constants.REG_SIZE - 1   # 16-bit register / pc value

class Status(Enum):
    HIT = "HIT"
    MISS = "MISS"
    def __str__(self):
        return self.value

class AccessKind(Enum):
    LOAD = "LW"
    STORE = "SW"

# one line of cache activity; formatted by AccessLogger and then dropped
AccessRecord = namedtuple("AccessRecord", ["name", "status", "pc", "addr", "row"])

# a decoded E20 instruction word
Instruction = namedtuple("Instruction", ["opcode", "rA", "rB", "rC", "func", "imm7", "imm13"])

class Way: # way === one slot of a row
    def __init__(self):
        self.vbit = 0
        self.tag = -1
        self.last_used = 0  # recency stamp, 0 means never touched
    # getters
    def get_vbit(self):
        return self.vbit
    def get_tag(self):
        return self.tag
    # setters
    def set_vbit(self,new_vbit):
        self.vbit = new_vbit
    def set_tag(self,new_tag):
        self.tag = new_tag
class Row:
    """
    A cache row (set): a fixed number of ways addressed by index.
    Recency is kept as a stamp per way; the way with the highest stamp is
    the most recently used one.
    """
    def __init__(self, assoc):
        self.ways = [Way() for _ in range(assoc)]
    def lookup(self, tag):
        """
        Index of the valid way holding tag, or None
        sig: int -> int or NoneType
        """
        for idx, way in enumerate(self.ways):
            if way.get_vbit() == 1 and way.get_tag() == tag:
                return idx
        return None
    def victim(self):
        """
        Index of the way to fill on a miss. An empty way is always taken
        before anything is evicted; otherwise the least recently used way
        goes. Ties go to the lowest index.
        sig: NoneType -> int
        """
        for idx, way in enumerate(self.ways):
            if way.get_vbit() == 0:
                return idx
        return min(range(len(self.ways)), key=lambda idx: self.ways[idx].last_used)
    def touch(self, idx, stamp):
        """ promote way idx to the front of the row """
        self.ways[idx].last_used = stamp
    def install(self, idx, tag, stamp):
        way = self.ways[idx]
        way.set_vbit(1)
        way.set_tag(tag)
        self.touch(idx, stamp)
    def mru_order(self):
        """
        Way indices from most recently used to least recently used.
        Never-touched ways come last, lowest index first among them.
        sig: NoneType -> list(int)
        """
        return sorted(range(len(self.ways)), key=lambda idx: (-self.ways[idx].last_used, idx))
class Cache:
    """
    One level of a set-associative LRU cache.

    name -- The name of the cache. "L1" or "L2"

    size -- The total size of the cache, measured in memory cells.
        Excludes metadata

    assoc -- The associativity of the cache (ways per row)

    blocksize -- The blocksize of the cache, in memory cells
    """
    def __init__(self, name, size, assoc, blocksize):
        if size <= 0 or assoc <= 0 or blocksize <= 0:
            raise ValueError("Invalid cache config: size, associativity and blocksize must be positive")
        if size % (assoc * blocksize) != 0:
            raise ValueError("Invalid cache config: size %s is not a multiple of associativity %s "
                             "times blocksize %s" % (size, assoc, blocksize))
        self.name = name
        self.size = size
        self.assoc = assoc
        self.blocksize = blocksize
        self.num_rows = size // (assoc * blocksize) # total rows = cacheSize // (assoc * blockSize)
        self.rows = [Row(assoc) for _ in range(self.num_rows)]
        self.clock = 0 # bumped on every access, used as the recency stamp
    def decompose(self, addr):
        """
        Splits a memory address into the row it maps to and the tag stored there
        sig: int -> (int, int)
        """
        blockID = addr // self.blocksize
        return blockID % self.num_rows, blockID // self.num_rows
    def access(self, kind, addr):
        """
        Looks up addr, updating recency and installing the block on a miss.
        Loads and stores are handled alike (write-through, write-allocate);
        kind only tells the caller what kind of reference it was.
        sig: AccessKind, int -> (Status, int)
        """
        self.clock += 1
        row_idx, tag = self.decompose(addr)
        row = self.rows[row_idx]
        way_idx = row.lookup(tag)
        if way_idx is not None: # hit --> promote, tag stays as is
            row.touch(way_idx, self.clock)
            return Status.HIT, row_idx
        # miss --> take an empty way or evict the LRU one
        row.install(row.victim(), tag, self.clock)
        return Status.MISS, row_idx
class AccessLogger:
    """
    Prints cache configuration lines and one line per cache access.
    emit receives each formatted line; it defaults to print.
    """
    def __init__(self, emit=print):
        self.emit = emit
    def log_config(self, cache):
        """
        Prints out the correctly-formatted configuration of a cache.

        sig: Cache -> NoneType
        """
        summary = "Cache %s has size %s, associativity %s, " \
            "blocksize %s, rows %s" % (cache.name,
            cache.size, cache.assoc, cache.blocksize, cache.num_rows)
        self.emit(summary)
    def log_access(self, record):
        """
        Prints out a correctly-formatted log entry.

        record.name -- The name of the cache where the event
            occurred. "L1" or "L2"

        record.status -- The kind of cache event, HIT or MISS

        record.pc -- The program counter of the memory
            access instruction

        record.addr -- The memory address being accessed.

        record.row -- The cache row or set number where the data
            is stored.

        sig: AccessRecord -> NoneType
        """
        log_entry = "{event:8s} pc:{pc:5d}\taddr:{addr:5d}\t" \
            "row:{row:4d}".format(row=record.row, pc=record.pc, addr=record.addr,
                event = record.name + " " + str(record.status))
        self.emit(log_entry)
class CacheHierarchy:
    """
    A mandatory L1 and an optional L2. L2 is only consulted when L1 misses;
    it does not mirror L1's contents.
    """
    def __init__(self, l1, l2=None, logger=None):
        self.l1 = l1
        self.l2 = l2
        self.logger = logger if logger is not None else AccessLogger()
    def caches(self):
        return [cache for cache in (self.l1, self.l2) if cache is not None]
    def log_config(self):
        for cache in self.caches():
            self.logger.log_config(cache)
    def access(self, kind, addr, pc):
        """
        Runs one load or store through the hierarchy, logging every level
        that was queried. Returns the L1 status.
        sig: AccessKind, int, int -> Status
        """
        l1_status = self._query(self.l1, kind, addr, pc)
        if l1_status == Status.MISS and self.l2 is not None:
            self._query(self.l2, kind, addr, pc)
        return l1_status
    def _query(self, cache, kind, addr, pc):
        status, row = cache.access(kind, addr)
        self.logger.log_access(AccessRecord(cache.name, status, pc, addr, row))
        return status
def build_hierarchy(cache_config, logger=None):
    """
    Builds the caches from the (size, assoc, blocksize) triples returned by
    parse_cache_config. The first triple is L1, the optional second one L2.
    sig: list(tuple(int, int, int)), AccessLogger -> CacheHierarchy
    """
    caches = [Cache("L%d" % (level + 1), *triple) for level, triple in enumerate(cache_config)]
    return CacheHierarchy(*caches, logger=logger)
def parse_cache_config(text):
    """
    Parses "size,assoc,blocksize" or "size,assoc,blocksize,size,assoc,blocksize"
    sig: str -> list(tuple(int, int, int))
    """
    parts = text.split(",")
    if len(parts) not in (3, 6):
        raise ValueError("Invalid cache config")
    try:
        values = [int(x) for x in parts]
    except ValueError:
        raise ValueError("Invalid cache config: %s" % text)
    return [tuple(values[i:i+3]) for i in range(0, len(values), 3)]
class Machine:
    """
    Processor state for one run: pc, the register file and memory.
    Register 0 is kept at zero by the executor after every instruction.
    """
    def __init__(self):
        self.pc = 0
        self.regs = [0] * constants.NUM_REGS
        self.mem = [0] * constants.MEM_SIZE
        self.steps = 0 # executed instructions
    def read(self, addr):
        return self.mem[getMemoryAddress(addr)]
    def write(self, addr, value):
        self.mem[getMemoryAddress(addr)] = value & WORD_MASK
def load_machine_code(machine_code, mem):
    """
    Loads an E20 machine code file into the list
    provided by mem. We assume that mem is
    large enough to hold the values in the machine
    code file.
    sig: list(str) -> list(int) -> NoneType
    """
    machine_code_re = re.compile(r"^ram\[(\d+)\] = 16'b([01]{16});.*$")
    expectedaddr = 0
    for line in machine_code:
        match = machine_code_re.match(line)
        if not match:
            raise ValueError("Can't parse line: %s" % line.rstrip("\n"))
        addr, instr = match.groups()
        addr = int(addr,10)
        instr = int(instr,2)
        if addr != expectedaddr:
            raise ValueError("Memory addresses encountered out of sequence: %s" % addr)
        if addr >= len(mem):
            raise ValueError("Program too big for memory")
        expectedaddr += 1
        mem[addr] = instr
def signExtend(imm7):
    """
    the imm7 argument is signed
    this function will extend imm7 to 16-bits using 1s if imm7's MSB is 1
    this function will extend imm7 to 16-bits using 0s if imm7's MSB is 0 === do nothing if imm7's MSB is 0
    sig: int --> int
    """
    if imm7 & 64: # MSB of the 7 bits is set --> negative
        return imm7 | 65408   # turn on idx7 through idx15
    return imm7
def getMemoryAddress(addr):
    """
    Wraps any address into the 8192 available memory cells
    sig: int --> int
    """
    return addr & ADDR_MASK
def decode(instructions):
    """
    Splits a 16-bit instruction word into its fields
    sig: int -> Instruction
    """
    return Instruction(opcode = (instructions & 57344) >> 13,  # bits 15 14 13
                       rA = (instructions & 7168) >> 10,       # bits 12 11 10
                       rB = (instructions & 896) >> 7,         # bits 9 8 7
                       rC = (instructions & 112) >> 4,         # bits 6 5 4
                       func = instructions & 15,               # bits 3 2 1 0, only used by opcode 000
                       imm7 = signExtend(instructions & 127),  # bits 6 ... 0, signed
                       imm13 = instructions & 8191)            # bits 12 ... 0, unsigned
def step(machine, hierarchy=None):
    """
    Executes the instruction at machine.pc.
    Loads and stores are run through hierarchy (when given) before memory is
    touched; the cache never changes the value that is loaded or stored.
    Returns True when the instruction jumped to itself, i.e. the program halted.
    sig: Machine, CacheHierarchy -> bool
    """
    pc = machine.pc
    regs = machine.regs
    ins = decode(machine.read(pc))
    new_pc = (pc + 1) & WORD_MASK

    if ins.opcode == 0: # three register arguments: add, sub, or, and, slt, jr
        srcA_value = regs[ins.rA]
        srcB_value = regs[ins.rB]
        if ins.func == 0: # add
            regs[ins.rC] = (srcA_value + srcB_value) & WORD_MASK
        elif ins.func == 1: # sub
            regs[ins.rC] = (srcA_value - srcB_value) & WORD_MASK
        elif ins.func == 2: # or
            regs[ins.rC] = srcA_value | srcB_value
        elif ins.func == 3: # and
            regs[ins.rC] = srcA_value & srcB_value
        elif ins.func == 4: # slt, unsigned
            regs[ins.rC] = 1 if srcA_value < srcB_value else 0
        elif ins.func == 8: # jr
            new_pc = srcA_value
    elif ins.opcode == 1: # addi
        regs[ins.rB] = (regs[ins.rA] + ins.imm7) & WORD_MASK
    elif ins.opcode == 2: # j
        new_pc = ins.imm13
    elif ins.opcode == 3: # jal
        regs[7] = (pc + 1) & WORD_MASK
        new_pc = ins.imm13
    elif ins.opcode == 4: # lw
        addr = getMemoryAddress(regs[ins.rA] + ins.imm7)
        if hierarchy is not None:
            hierarchy.access(AccessKind.LOAD, addr, pc)
        regs[ins.rB] = machine.read(addr)
    elif ins.opcode == 5: # sw
        addr = getMemoryAddress(regs[ins.rA] + ins.imm7)
        if hierarchy is not None:
            hierarchy.access(AccessKind.STORE, addr, pc)
        machine.write(addr, regs[ins.rB])
    elif ins.opcode == 6: # jeq
        if regs[ins.rA] == regs[ins.rB]:
            new_pc = (pc + 1 + ins.imm7) & WORD_MASK
    else: # slti, unsigned compare against the sign-extended immediate
        regs[ins.rB] = 1 if regs[ins.rA] < ins.imm7 else 0

    machine.steps += 1
    halt = getMemoryAddress(pc) == new_pc
    if not halt:
        machine.pc = new_pc
    regs[0] = 0 # $0 is hard-wired to zero
    return halt
def run(machine, hierarchy=None):
    """
    Steps the machine until it halts. A program that never jumps to itself
    never returns.
    sig: Machine, CacheHierarchy -> Machine
    """
    while not step(machine, hierarchy):
        pass
    return machine
def main(argv=None):
    parser = argparse.ArgumentParser(description='Simulate E20 cache')
    parser.add_argument('filename', help=
        'The file containing machine code, typically with .bin suffix')
    parser.add_argument('--cache', help=
        'Cache configuration: size,associativity,blocksize (for one cache) '
        'or size,associativity,blocksize,size,associativity,blocksize (for two caches)')
    cmdline = parser.parse_args(argv)
    machine = Machine()
    try:
        try:
            with open(cmdline.filename) as file:
                load_machine_code(file, machine.mem)
        except OSError:
            raise ValueError("Can't open file %s" % cmdline.filename)
        if not cmdline.cache: # no cache configured, nothing to simulate
            return 0
        hierarchy = build_hierarchy(parse_cache_config(cmdline.cache))
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1
    hierarchy.log_config()
    run(machine, hierarchy)
    return 0
if __name__ == "__main__":
    sys.exit(main())
